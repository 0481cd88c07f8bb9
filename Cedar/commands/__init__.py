"""
Named operations and the application context that serves them.
"""

from .app import CedarApp
from .base import CommandError, CommandInput, CommandResponse, StepResponse

__all__ = [
    "CedarApp",
    "CommandError",
    "CommandInput",
    "CommandResponse",
    "StepResponse",
]
