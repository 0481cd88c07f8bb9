"""
Session/Context Manager.

Executes steps against one reconstructed interpreter state. There is no
long-lived interpreter: every code step replays the whole accumulated
script in a fresh process, so all earlier bindings are in scope and a
crashed run leaves nothing to recover. Total work grows quadratically
with the number of steps; sessions are short and model latency dominates.

New output is found by prefix comparison against the previous full
output. When the previous output is not a prefix of the new one (random
values, timestamps, a changed environment) the whole new output is
reported as new. That can repeat earlier lines and is accepted as a
known limitation. The comparison always uses the untruncated stdout;
only the new output shown for a step is cut to ``max_output_bytes``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .models import SessionState, SessionStatus, Step, StepResult, StepStatus
from ..execution.dependencies import DependencyResolver, DependencyStatus
from ..execution.executor import ExecutionResult, ScriptExecutor, truncate_output
from ..execution.output_parser import parse_output
from ..execution.preprocessor import echo_last_expression
from ..infrastructure.errors import CedarError

logger = logging.getLogger("cedar.session")


def extract_new_output(previous: str, current: str) -> str:
    """
    The part of ``current`` produced since ``previous``.

    Returns the trimmed suffix when ``previous`` is a prefix of ``current``,
    otherwise ``current`` unchanged.
    """
    if current.startswith(previous):
        return current[len(previous):].strip()
    return current


def append_code(script: str, code: str) -> str:
    """Append one step's code to the accumulated script, newline separated."""
    if script and not script.endswith("\n"):
        script += "\n"
    block = code if code.endswith("\n") else code + "\n"
    return script + block


class SessionManager:
    """
    Runs steps for sessions.

    The manager holds no per-session data; every call receives the
    ``SessionState`` it works on, so one manager can serve many sessions.
    """

    def __init__(
        self,
        executor: ScriptExecutor,
        resolver: DependencyResolver,
        echo_last_expression: bool = False,
        max_output_bytes: Optional[int] = None,
    ):
        self.executor = executor
        self.resolver = resolver
        self.echo_last_expression = echo_last_expression
        self.max_output_bytes = max_output_bytes

    async def run_step(self, step: Step, state: SessionState) -> tuple[StepResult, SessionState]:
        """
        Execute one step and record it on the session.

        A code step is appended to the accumulated script and the entire
        script is run. On failure with a missing-module signature the
        package is installed and the same script is run exactly once more.
        The script and last output only advance when the step succeeds, so
        a failed step can be edited and retried.

        Returns:
            (result, state) with the recorded step appended to ``state.steps``

        Raises:
            ValueError: If the step index is already used in this session
            ExecutorSpawnError: If the interpreter cannot be started
        """
        if state.get_step(step.index) is not None:
            raise ValueError(f"Step {step.index} already recorded in session {state.session_id}")

        if not step.kind.is_code:
            result = self._narrative_result(step)
            return result, self._record(state, step, result)

        code = echo_last_expression(step.content) if self.echo_last_expression else step.content
        candidate = append_code(state.script, code)

        state.status = SessionStatus.RUNNING
        try:
            result, execution = await self._execute_with_recovery(candidate, step.index)
        except asyncio.CancelledError:
            state.status = SessionStatus.HALTED
            raise
        except CedarError:
            state.status = SessionStatus.FAILED
            raise

        new_output = extract_new_output(state.last_output, execution.complete_stdout)
        if self.max_output_bytes is not None:
            new_output, _ = truncate_output(new_output, self.max_output_bytes)
        result.new_output = new_output
        if result.succeeded:
            parsed = parse_output(result.new_output)
            result.output_kind = parsed.kind
            result.formatted_output = parsed.formatted
            state.script = candidate
            state.last_output = execution.complete_stdout
            state.context.update_from_code(code, step.index)
            self.resolver.record_imports(code, step.index)
            state.status = SessionStatus.IDLE
        else:
            state.status = SessionStatus.FAILED

        logger.info(
            "Session %s step %d %s in %dms (%d attempt(s))",
            state.session_id, step.index, result.status.value, result.elapsed_ms, result.attempts,
        )
        return result, self._record(state, step, result)

    async def _execute_with_recovery(
        self,
        script: str,
        step_index: int,
    ) -> tuple[StepResult, ExecutionResult]:
        logs: list[str] = []
        execution = await self.executor.execute(script)
        attempts = 1
        elapsed = execution.execution_time_ms

        if not execution.success:
            logs.append(self._failure_line(execution))
            if not execution.timed_out:
                retry = await self._resolve_missing(execution.stderr, step_index, logs)
                if retry:
                    execution = await self.executor.execute(script)
                    attempts = 2
                    elapsed += execution.execution_time_ms
                    if execution.success:
                        logs.append("Re-execution after install succeeded")
                    else:
                        logs.append(f"Re-execution after install failed: {self._failure_line(execution)}")

        if execution.truncated:
            logs.append("Output exceeded the size limit and was truncated")
        return self._build_result(execution, attempts, elapsed, logs), execution

    async def _resolve_missing(self, stderr: str, step_index: int, logs: list[str]) -> bool:
        """Try the resolver once. Returns True when a re-execution is due."""
        record = await self.resolver.detect_and_install(stderr, step_index=step_index)
        if record is None:
            logs.append("No missing-package signature found; not retrying")
            return False

        logs.append(f"Missing module '{record.module}' detected; package '{record.name}'")
        if record.status == DependencyStatus.PENDING:
            logs.append("Automatic install disabled; not retrying")
            return False
        if record.status == DependencyStatus.INSTALLED:
            version = f" {record.version}" if record.version else ""
            logs.append(f"Installed {record.name}{version}")
        else:
            logs.append(f"Install of {record.name} failed: {(record.error_message or '').strip()[:300]}")
        return True

    @staticmethod
    def _failure_line(execution: ExecutionResult) -> str:
        if execution.timed_out:
            return execution.stderr
        last_line = execution.stderr.strip().splitlines()[-1] if execution.stderr.strip() else ""
        return f"Exit code {execution.returncode}: {last_line}".rstrip(": ")

    def _build_result(
        self,
        execution: ExecutionResult,
        attempts: int,
        elapsed: int,
        logs: list[str],
    ) -> StepResult:
        if execution.success:
            return StepResult(
                status=StepStatus.SUCCEEDED,
                raw_output=execution.stdout,
                elapsed_ms=elapsed,
                attempts=attempts,
                logs=logs,
            )
        error = execution.stderr.strip() or f"Process exited with code {execution.returncode}"
        return StepResult(
            status=StepStatus.FAILED,
            raw_output=execution.stdout,
            error=error,
            formatted_output=error,
            elapsed_ms=elapsed,
            attempts=attempts,
            timed_out=execution.timed_out,
            logs=logs,
        )

    @staticmethod
    def _narrative_result(step: Step) -> StepResult:
        text = step.content.strip()
        return StepResult(
            status=StepStatus.SUCCEEDED,
            new_output=text,
            formatted_output=text,
            logs=["Narrative step; nothing executed"],
        )

    @staticmethod
    def _record(state: SessionState, step: Step, result: StepResult) -> SessionState:
        state.steps.append(step.model_copy(update={"result": result}))
        state.touch()
        return state
