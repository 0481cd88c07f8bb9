"""
Research sessions: data model, notebook context and the step runner.
"""

from .context import NotebookContext, VariableInfo
from .models import (
    NextAction,
    SessionState,
    SessionStatus,
    Step,
    StepKind,
    StepResult,
    StepStatus,
    ValidationVerdict,
)
from .manager import SessionManager, append_code, extract_new_output

__all__ = [
    "NotebookContext",
    "VariableInfo",
    "NextAction",
    "SessionState",
    "SessionStatus",
    "Step",
    "StepKind",
    "StepResult",
    "StepStatus",
    "ValidationVerdict",
    "SessionManager",
    "append_code",
    "extract_new_output",
]
