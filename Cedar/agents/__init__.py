"""
Language-model agents for Cedar.
"""

from .research_agent import (
    PlanResponse,
    PlannedStep,
    ResearchAgent,
    parse_strict,
    strip_code_fence,
)

__all__ = [
    "PlanResponse",
    "PlannedStep",
    "ResearchAgent",
    "parse_strict",
    "strip_code_fence",
]
