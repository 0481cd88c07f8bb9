"""
Cedar Infrastructure Layer.

Provides the error taxonomy shared by execution, agents, storage and the
command layer.
"""

from .errors import (
    ErrorCategory,
    CedarError,
    FatalError,
    DegradedError,
    ModelCallError,
    ModelResponseError,
    ExecutorSpawnError,
    SessionNotFoundError,
    ProjectNotFoundError,
    QuestionNotFoundError,
    handle_error,
)

__all__ = [
    "ErrorCategory",
    "CedarError",
    "FatalError",
    "DegradedError",
    "ModelCallError",
    "ModelResponseError",
    "ExecutorSpawnError",
    "SessionNotFoundError",
    "ProjectNotFoundError",
    "QuestionNotFoundError",
    "handle_error",
]
