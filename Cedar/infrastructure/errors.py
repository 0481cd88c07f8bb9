"""
Cedar Error Handling Framework.

Categorizes errors for consistent handling:
- FATAL: Stop the calling operation, surface to the user
- DEGRADED: Continue with reduced functionality, warn user

Script failures are not exceptions: they are recorded on the step result
and handed back to the caller. Exceptions here cover the model boundary,
the interpreter boundary and lookups in the state store.
"""

from enum import Enum
from typing import Optional, Any

from ..utils import console


class ErrorCategory(Enum):
    """Classifies errors for handling decisions."""
    FATAL = "fatal"  # Stop the operation, user action required
    DEGRADED = "degraded"  # Continue with warning


class CedarError(Exception):
    """Base exception for Cedar errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        context: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.category = category
        self.context = context or {}
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value.upper()}] {self.message}"]
        if self.original_error:
            parts.append(f"Cause: {str(self.original_error)}")
        return "\n".join(parts)


class FatalError(CedarError):
    """Stop execution - requires user intervention or retry."""

    def __init__(
        self,
        message: str,
        context: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, ErrorCategory.FATAL, context, original_error)


class DegradedError(CedarError):
    """Continue with reduced functionality and warning."""

    def __init__(
        self,
        message: str,
        context: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, ErrorCategory.DEGRADED, context, original_error)


class ModelCallError(FatalError):
    """The language model could not be reached or returned an HTTP error."""


class ModelResponseError(FatalError):
    """The language model replied with text that is not the requested structure."""

    def __init__(
        self,
        message: str,
        raw_response: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            context={"raw_response": raw_response[:2000]},
            original_error=original_error,
        )
        self.raw_response = raw_response


class ExecutorSpawnError(FatalError):
    """The interpreter subprocess could not be started."""


class SessionNotFoundError(FatalError):
    """No session with the requested id is loaded or stored."""


class ProjectNotFoundError(FatalError):
    """No project with the requested id is stored."""


class QuestionNotFoundError(FatalError):
    """The project has no question with the requested id."""


def handle_error(error: CedarError, action_name: str = "operation") -> bool:
    """
    Report an error based on its category.

    Args:
        error: CedarError to handle
        action_name: Name of action that failed (for logging)

    Returns:
        True if execution should continue, False if should stop
    """
    if error.category == ErrorCategory.FATAL:
        console.error(f"FATAL ERROR in {action_name}:")
        console.error(str(error))
        return False

    if error.category == ErrorCategory.DEGRADED:
        console.warning(f"DEGRADED MODE in {action_name}:")
        console.warning(str(error))
        return True

    return False
