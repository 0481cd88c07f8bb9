"""
Plan/Validation Agent.

Turns a goal into ordered steps and judges each executed step, one model
call per operation. Replies must be the requested JSON object; the only
leniency is unwrapping a single Markdown code fence around it. Anything
else raises ``ModelResponseError`` and is not retried.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from .prompts import PLAN_PROMPT, REVISE_PROMPT, SYSTEM_PROMPT, VALIDATE_PROMPT
from ..infrastructure.errors import ModelResponseError
from ..llm_backends.base import ChatMessage, LLMBackend
from ..session.context import NotebookContext
from ..session.models import Step, StepKind, StepResult, ValidationVerdict

logger = logging.getLogger("cedar.agents")

FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n(.*?)\n?```$", re.DOTALL)

ModelT = TypeVar("ModelT", bound=BaseModel)


class PlannedStep(BaseModel):
    kind: StepKind
    title: str = ""
    content: str = Field(..., min_length=1)

    model_config = {"extra": "forbid"}


class PlanResponse(BaseModel):
    steps: list[PlannedStep] = Field(..., min_length=1)

    model_config = {"extra": "forbid"}


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = FENCE_RE.match(stripped)
    return match.group(1).strip() if match else stripped


def parse_strict(text: str, model: type[ModelT]) -> ModelT:
    """
    Validate a model reply against ``model`` or raise ModelResponseError.

    Strict mode: ``"true"`` is not a bool and ``"0.9"`` is not a number.
    """
    if not isinstance(text, str):
        raise ModelResponseError(
            f"Model reply is not text (got {type(text).__name__})",
            raw_response=str(text),
        )
    try:
        return model.model_validate_json(strip_code_fence(text), strict=True)
    except ValidationError as e:
        raise ModelResponseError(
            f"Model reply is not a valid {model.__name__}",
            raw_response=text,
            original_error=e,
        ) from e


class ResearchAgent:
    """
    Plans research steps and validates their results.

    Example:
        agent = ResearchAgent(create_backend("openai:gpt-4o"))
        steps = await agent.plan("compute the mean of [1,2,3,4,5]")
    """

    def __init__(
        self,
        backend: LLMBackend,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ):
        self.backend = backend
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def _ask(self, prompt: str) -> str:
        messages: list[ChatMessage] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        return await self.backend.acomplete(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    async def plan(self, goal: str, start_index: int = 1) -> list[Step]:
        """Ordered steps for a goal, indexed from ``start_index``."""
        reply = await self._ask(PLAN_PROMPT.format(goal=goal))
        plan = parse_strict(reply, PlanResponse)
        logger.info("Planned %d step(s) for goal %r", len(plan.steps), goal[:80])
        return [
            Step(index=start_index + offset, kind=planned.kind, title=planned.title, content=planned.content)
            for offset, planned in enumerate(plan.steps)
        ]

    async def validate(
        self,
        goal: str,
        step: Step,
        result: StepResult,
        context: Optional[NotebookContext] = None,
    ) -> ValidationVerdict:
        """The model's verdict on one executed step."""
        prompt = VALIDATE_PROMPT.format(
            goal=goal,
            index=step.index,
            kind=step.kind.value,
            title=step.title or "(untitled)",
            content=step.content,
            status=result.status.value,
            output=_clip(result.new_output) or "(no output)",
            error=_clip(result.error or "") or "(none)",
            variables=(context or NotebookContext()).summary(),
        )
        verdict = parse_strict(await self._ask(prompt), ValidationVerdict)
        logger.info(
            "Step %d verdict: valid=%s confidence=%.2f next=%s",
            step.index, verdict.valid, verdict.confidence, verdict.next_action.value,
        )
        return verdict

    async def revise(
        self,
        goal: str,
        step: Step,
        result: StepResult,
        verdict: Optional[ValidationVerdict],
        index: int,
        context: Optional[NotebookContext] = None,
    ) -> Step:
        """A replacement for ``step`` built from the reviewer's feedback."""
        prompt = REVISE_PROMPT.format(
            goal=goal,
            kind=step.kind.value,
            title=step.title or "(untitled)",
            content=step.content,
            status=result.status.value,
            output=_clip(result.new_output) or "(no output)",
            error=_clip(result.error or "") or "(none)",
            issues="; ".join(verdict.issues) if verdict else "(none)",
            suggestions="; ".join(verdict.suggestions) if verdict else "(none)",
            variables=(context or NotebookContext()).summary(),
        )
        planned = parse_strict(await self._ask(prompt), PlannedStep)
        return Step(
            index=index,
            kind=planned.kind,
            title=planned.title or step.title,
            content=planned.content,
            revises=step.index,
        )


def _clip(text: str, limit: int = 4000) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... [clipped]"
