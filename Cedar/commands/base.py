"""
Typed requests and responses for Cedar's named operations.

Every operation takes a pydantic request model and answers with a
``CommandResponse``; failures become ``success=False`` with an error
string rather than escaping to the caller.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from ..execution.output_parser import OutputKind
from ..session.models import Step, StepKind, StepStatus


class CommandInput(BaseModel):
    """Base class for command parameters."""

    model_config = {"extra": "forbid"}  # Reject unexpected fields


class CommandResponse(BaseModel):
    """Base class for command output."""
    success: bool = True
    error: Optional[str] = None
    data: Any = None


class CommandError(Exception):
    """Raised when a command name or its parameters are not acceptable."""

    def __init__(self, command: str, message: str):
        self.command = command
        self.message = message
        super().__init__(f"[{command}] {message}")


class CreateProjectInput(CommandInput):
    name: str = Field(..., min_length=1, description="Display name; the id is derived from it")
    goal: str = Field("", description="Research goal")


class StartResearchInput(CommandInput):
    project_id: str
    goal: str = Field(..., min_length=1)


class NewSessionInput(CommandInput):
    project_id: Optional[str] = None
    goal: str = ""


class ExecuteStepInput(CommandInput):
    session_id: str
    content: str = Field(..., min_length=1, description="Code or narrative text")
    kind: StepKind = StepKind.EXECUTABLE
    title: str = ""
    validate_step: bool = Field(False, description="Ask the model for a verdict afterwards")


class SessionInput(CommandInput):
    session_id: str


class ProjectInput(CommandInput):
    project_id: str


class InstallDependencyInput(CommandInput):
    project_id: str
    package: str = Field(..., min_length=1, description="Package name, optionally with version")


class ReportInput(CommandInput):
    project_id: str
    session_id: str


class AddReferenceInput(CommandInput):
    project_id: str
    title: str = Field(..., min_length=1)
    authors: list[str] = Field(default_factory=list)
    year: Optional[int] = None
    journal: Optional[str] = None
    url: Optional[str] = None
    doi: Optional[str] = None


class AddQuestionInput(CommandInput):
    project_id: str
    question: str = Field(..., min_length=1)
    answer: Optional[str] = Field(None, description="Record the question as already answered")


class AnswerQuestionInput(CommandInput):
    project_id: str
    question_id: str
    answer: str = Field(..., min_length=1)


class ListQuestionsInput(CommandInput):
    project_id: str
    status: Optional[Literal["open", "answered"]] = None


class EmptyInput(CommandInput):
    pass


class StepResponse(BaseModel):
    """What the UI needs to show for one step."""

    index: int
    kind: StepKind
    title: str
    status: StepStatus
    raw_output: str = ""
    formatted_output: str = ""
    output_kind: OutputKind = OutputKind.TEXT
    error: Optional[str] = None
    elapsed_ms: int = 0
    verdict: Optional[dict[str, Any]] = None
    logs: list[str] = Field(default_factory=list)

    @classmethod
    def from_step(cls, step: Step) -> StepResponse:
        result = step.result
        return cls(
            index=step.index,
            kind=step.kind,
            title=step.title,
            status=step.status,
            raw_output=result.raw_output if result else "",
            formatted_output=result.formatted_output if result else "",
            output_kind=result.output_kind if result else OutputKind.TEXT,
            error=result.error if result else None,
            elapsed_ms=result.elapsed_ms if result else 0,
            verdict=step.verdict.model_dump(mode="json") if step.verdict else None,
            logs=list(result.logs) if result else [],
        )
