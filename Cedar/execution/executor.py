"""
Script Executor: run a complete Python script in a fresh subprocess.

Provides:
- One interpreter process per call, script fed through stdin
- Execution timeout handling
- Output truncation
- Environment sanitization (API keys never reach generated code)
- Cancellation that reaps the child process
"""

from __future__ import annotations

__all__ = [
    "ExecutionResult",
    "ExecutorConfig",
    "ScriptExecutor",
    "truncate_output",
]

import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field

from ..infrastructure.errors import ExecutorSpawnError

logger = logging.getLogger("cedar.execution")

TRUNCATION_MARKER = "\n... [output truncated]"


def truncate_output(text: str, max_bytes: int) -> tuple[str, bool]:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes, marking the cut."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text, False
    # A multi-byte character split at the boundary is dropped
    return encoded[:max_bytes].decode("utf-8", errors="ignore") + TRUNCATION_MARKER, True


@dataclass
class ExecutionResult:
    """Result of one script execution."""

    returncode: int
    stdout: str
    stderr: str

    timed_out: bool = False
    truncated: bool = False
    execution_time_ms: int = 0

    # Untruncated stdout, kept only when ``stdout`` was cut
    full_stdout: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def complete_stdout(self) -> str:
        return self.full_stdout if self.full_stdout is not None else self.stdout


class ExecutorConfig(BaseModel):
    """Configuration for the script executor."""

    python_executable: str = Field(default=sys.executable, description="Interpreter to run")
    timeout_seconds: int = Field(default=300, description="Max execution time")
    max_output_bytes: int = Field(default=100_000, description="Max stdout/stderr size in UTF-8 bytes")

    working_dir: Optional[str] = Field(default=None, description="Working directory")

    inherit_env: bool = Field(default=True, description="Inherit environment")
    env_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="Environment overrides"
    )
    blocked_env_vars: list[str] = Field(
        default_factory=lambda: ["OPENAI_API_KEY", "ANTHROPIC_API_KEY"],
        description="Env vars hidden from executed code"
    )

    model_config = {"extra": "forbid"}


class ScriptExecutor:
    """
    Runs accumulated notebook scripts.

    Every call spawns ``python -u -`` and writes the script to its stdin, so
    nothing survives between calls except what the script itself rebuilds.

    Example:
        executor = ScriptExecutor(ExecutorConfig(timeout_seconds=30))
        result = await executor.execute("print(sum([1, 2, 3]))")
        if result.success:
            print(result.stdout)
    """

    def __init__(self, config: Optional[ExecutorConfig] = None):
        self.config = config or ExecutorConfig()

    def _get_safe_env(self) -> dict[str, str]:
        """Get sanitized environment variables."""
        env = dict(os.environ) if self.config.inherit_env else {}
        for var in self.config.blocked_env_vars:
            env.pop(var, None)
        env.update(self.config.env_overrides)
        # Generated code prints non-ASCII freely
        env.setdefault("PYTHONIOENCODING", "utf-8")
        return env

    async def execute(self, script: str) -> ExecutionResult:
        """
        Execute a script.

        Args:
            script: Full Python source to run

        Returns:
            ExecutionResult with output and status

        Raises:
            ExecutorSpawnError: If the interpreter could not be started
        """
        start_time = time.perf_counter()

        try:
            process = await asyncio.create_subprocess_exec(
                self.config.python_executable, "-u", "-",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._get_safe_env(),
                cwd=self.config.working_dir,
            )
        except OSError as e:
            raise ExecutorSpawnError(
                f"Could not start interpreter {self.config.python_executable}",
                context={"working_dir": self.config.working_dir},
                original_error=e,
            ) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(script.encode("utf-8")),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            execution_time = int((time.perf_counter() - start_time) * 1000)
            logger.warning("Script timed out after %ss", self.config.timeout_seconds)
            return ExecutionResult(
                returncode=-1,
                stdout="",
                stderr=f"Script timed out after {self.config.timeout_seconds}s",
                timed_out=True,
                execution_time_ms=execution_time,
            )
        except asyncio.CancelledError:
            await self._kill(process)
            logger.info("Script execution cancelled, child process killed")
            raise

        full_stdout = stdout_bytes.decode("utf-8", errors="replace")
        stdout, out_truncated = truncate_output(full_stdout, self.config.max_output_bytes)
        stderr, err_truncated = truncate_output(
            stderr_bytes.decode("utf-8", errors="replace"), self.config.max_output_bytes
        )
        execution_time = int((time.perf_counter() - start_time) * 1000)

        logger.debug(
            "Script finished rc=%s in %dms (%d bytes stdout)",
            process.returncode, execution_time, len(stdout_bytes),
        )

        return ExecutionResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout,
            stderr=stderr,
            truncated=out_truncated or err_truncated,
            execution_time_ms=execution_time,
            full_stdout=full_stdout if out_truncated else None,
        )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            return  # already exited
        await process.wait()
