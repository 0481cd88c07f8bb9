"""
Script execution for Cedar sessions.

- ScriptExecutor: runs an accumulated script in a fresh interpreter
- DependencyResolver: installs packages named by missing-module failures
- parse_output: classifies output as text, JSON or table
- echo_last_expression: notebook-style echo of a trailing expression
"""

from .executor import ExecutionResult, ExecutorConfig, ScriptExecutor
from .dependencies import (
    DependencyRecord,
    DependencyResolver,
    DependencySource,
    DependencyStatus,
    InstallOutcome,
    PackageInstaller,
    detect_imports,
    detect_missing_module,
    pip_name_for,
)
from .output_parser import OutputKind, ParsedOutput, parse_output
from .preprocessor import echo_last_expression

__all__ = [
    "ExecutionResult",
    "ExecutorConfig",
    "ScriptExecutor",
    "DependencyRecord",
    "DependencyResolver",
    "DependencySource",
    "DependencyStatus",
    "InstallOutcome",
    "PackageInstaller",
    "detect_imports",
    "detect_missing_module",
    "pip_name_for",
    "OutputKind",
    "ParsedOutput",
    "parse_output",
    "echo_last_expression",
]
