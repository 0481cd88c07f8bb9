"""
Session data model.

Steps, step results, validation verdicts and session state. All records
are pydantic models so the state store can write them as JSON.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .context import NotebookContext
from ..execution.output_parser import OutputKind
from ..utils import get_current_timestamp


class StepKind(str, Enum):
    NARRATIVE = "narrative"
    EXECUTABLE = "executable"
    DATA = "data"
    VISUALIZATION = "visualization"

    @property
    def is_code(self) -> bool:
        return self is not StepKind.NARRATIVE


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class NextAction(str, Enum):
    CONTINUE = "continue"
    REVISE = "revise"
    RESTART = "restart"
    ASK_USER = "ask_user"


class ValidationVerdict(BaseModel):
    """The model's judgment of one executed step. Immutable."""

    valid: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    issues: list[str]
    suggestions: list[str]
    next_action: NextAction
    next_step_recommendation: Optional[str] = None

    model_config = {"extra": "forbid", "frozen": True}


class StepResult(BaseModel):
    """What happened when a step ran."""

    status: StepStatus = StepStatus.PENDING
    raw_output: str = ""  # stdout of the replayed script, size-capped
    new_output: str = ""  # the part this step added
    output_kind: OutputKind = OutputKind.TEXT
    formatted_output: str = ""
    error: Optional[str] = None
    elapsed_ms: int = 0
    attempts: int = 0
    timed_out: bool = False
    logs: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED


class Step(BaseModel):
    """One unit of planned work."""

    index: int = Field(..., ge=1)
    kind: StepKind
    title: str = ""
    content: str
    result: Optional[StepResult] = None
    verdict: Optional[ValidationVerdict] = None
    revises: Optional[int] = None  # index of the step this one replaces

    model_config = {"extra": "forbid"}

    @property
    def status(self) -> StepStatus:
        return self.result.status if self.result else StepStatus.PENDING


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    HALTED = "halted"


class SessionState(BaseModel):
    """
    Everything one research session has accumulated.

    ``script`` is the concatenated code of every successful code step, in
    step order; replaying it alone rebuilds the interpreter state.
    ``last_output`` is the full stdout of the latest successful replay and
    is only used to tell new output from old.
    """

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    project_id: Optional[str] = None
    goal: str = ""
    script: str = ""
    last_output: str = ""
    steps: list[Step] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.IDLE
    context: NotebookContext = Field(default_factory=NotebookContext)
    created_at: str = Field(default_factory=get_current_timestamp)
    updated_at: str = Field(default_factory=get_current_timestamp)

    model_config = {"extra": "forbid"}

    def next_index(self) -> int:
        return max((s.index for s in self.steps), default=0) + 1

    def get_step(self, index: int) -> Optional[Step]:
        for step in self.steps:
            if step.index == index:
                return step
        return None

    def touch(self) -> None:
        self.updated_at = get_current_timestamp()
