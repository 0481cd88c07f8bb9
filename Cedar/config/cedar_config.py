"""
Cedar Configuration System.

Loads cedar_config.yaml (if present) into typed sections with sensible
defaults:
- LLM backend selection
- Script execution limits
- Dependency installation policy
- Storage location
- Research loop policy

Environment variables override file values so deployments can be tuned
without editing YAML. The resulting object is handed to ``CedarApp``;
there is no module-level instance.
"""

import logging
import os
import sys
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, List, Optional

import yaml

logger = logging.getLogger("cedar.config")

DEFAULT_CONFIG_NAME = "cedar_config.yaml"


@dataclass
class LLMConfig:
    """Language model backend configuration."""
    backend: str = "openai:gpt-4o"  # provider:model
    temperature: float = 0.2
    max_tokens: Optional[int] = None
    timeout_seconds: float = 60.0


@dataclass
class ExecutionConfig:
    """Script executor configuration."""
    python_executable: str = sys.executable
    timeout_seconds: int = 300
    max_output_bytes: int = 100_000
    working_dir: Optional[str] = None
    echo_last_expression: bool = False  # print() a trailing bare expression
    blocked_env_vars: List[str] = field(default_factory=lambda: [
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
    ])


@dataclass
class DependencyConfig:
    """Automatic package installation policy."""
    auto_install: bool = True
    install_timeout_seconds: int = 300
    pip_extra_args: List[str] = field(default_factory=list)


@dataclass
class StorageConfig:
    """Where session and project records live."""
    data_dir: str = "~/.cedar"

    def resolve(self) -> Path:
        return Path(os.path.expanduser(self.data_dir))


@dataclass
class ResearchConfig:
    """Research loop policy."""
    validate_steps: bool = True
    max_revisions: int = 1  # per planned step
    stop_on_invalid: bool = False


class CedarConfig:
    """
    Unified configuration for Cedar.

    Loads from cedar_config.yaml if available, otherwise uses defaults.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else Path.cwd() / DEFAULT_CONFIG_NAME

        if self.config_path.exists():
            with open(self.config_path) as f:
                data = yaml.safe_load(f) or {}
            logger.info("Loaded config from %s", self.config_path)
        else:
            data = {}
            logger.debug("No config file at %s, using defaults", self.config_path)

        self.llm = self._parse_llm(data.get("llm", {}))
        self.execution = self._parse_execution(data.get("execution", {}))
        self.dependencies = self._parse_dependencies(data.get("dependencies", {}))
        self.storage = self._parse_storage(data.get("storage", {}))
        self.research = self._parse_research(data.get("research", {}))

        self._apply_env_overrides()
        self._raw_config = data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CedarConfig":
        """Build a config from an in-memory mapping (no file lookup)."""
        config = cls.__new__(cls)
        config.config_path = None
        config.llm = config._parse_llm(data.get("llm", {}))
        config.execution = config._parse_execution(data.get("execution", {}))
        config.dependencies = config._parse_dependencies(data.get("dependencies", {}))
        config.storage = config._parse_storage(data.get("storage", {}))
        config.research = config._parse_research(data.get("research", {}))
        config._raw_config = data
        return config

    def _parse_llm(self, data: dict) -> LLMConfig:
        return LLMConfig(
            backend=data.get("backend", "openai:gpt-4o"),
            temperature=float(data.get("temperature", 0.2)),
            max_tokens=data.get("max_tokens"),
            timeout_seconds=float(data.get("timeout_seconds", 60.0)),
        )

    def _parse_execution(self, data: dict) -> ExecutionConfig:
        defaults = ExecutionConfig()
        return ExecutionConfig(
            python_executable=data.get("python_executable", defaults.python_executable),
            timeout_seconds=int(data.get("timeout_seconds", defaults.timeout_seconds)),
            max_output_bytes=int(data.get("max_output_bytes", defaults.max_output_bytes)),
            working_dir=data.get("working_dir"),
            echo_last_expression=bool(data.get("echo_last_expression", False)),
            blocked_env_vars=data.get("blocked_env_vars", defaults.blocked_env_vars),
        )

    def _parse_dependencies(self, data: dict) -> DependencyConfig:
        return DependencyConfig(
            auto_install=bool(data.get("auto_install", True)),
            install_timeout_seconds=int(data.get("install_timeout_seconds", 300)),
            pip_extra_args=list(data.get("pip_extra_args", [])),
        )

    def _parse_storage(self, data: dict) -> StorageConfig:
        return StorageConfig(data_dir=data.get("data_dir", "~/.cedar"))

    def _parse_research(self, data: dict) -> ResearchConfig:
        return ResearchConfig(
            validate_steps=bool(data.get("validate_steps", True)),
            max_revisions=int(data.get("max_revisions", 1)),
            stop_on_invalid=bool(data.get("stop_on_invalid", False)),
        )

    def _apply_env_overrides(self) -> None:
        """Apply CEDAR_* environment variables on top of file values."""
        if os.getenv("CEDAR_DATA_DIR"):
            self.storage.data_dir = os.environ["CEDAR_DATA_DIR"]
        if os.getenv("CEDAR_LLM_BACKEND"):
            self.llm.backend = os.environ["CEDAR_LLM_BACKEND"]
        if os.getenv("CEDAR_PYTHON"):
            self.execution.python_executable = os.environ["CEDAR_PYTHON"]
        if os.getenv("CEDAR_EXEC_TIMEOUT"):
            self.execution.timeout_seconds = int(os.environ["CEDAR_EXEC_TIMEOUT"])

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            "llm": asdict(self.llm),
            "execution": asdict(self.execution),
            "dependencies": asdict(self.dependencies),
            "storage": asdict(self.storage),
            "research": asdict(self.research),
        }
