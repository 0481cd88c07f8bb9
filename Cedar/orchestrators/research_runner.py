"""
Research loop.

goal -> plan -> for each step: execute, validate, act on the verdict.

The loop only moves past a step when the verdict says ``continue``.
``revise`` asks the agent for a replacement step (bounded per planned
step); ``restart`` and ``ask_user`` stop the loop and hand control back
to the caller together with the verdict.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..agents.research_agent import ResearchAgent
from ..config.cedar_config import ResearchConfig
from ..infrastructure.errors import CedarError
from ..session.manager import SessionManager
from ..session.models import (
    NextAction,
    SessionState,
    SessionStatus,
    Step,
    StepResult,
    ValidationVerdict,
)

logger = logging.getLogger("cedar.orchestrator")

StepCallback = Callable[[Step], None]


@dataclass
class RunOutcome:
    session: SessionState
    completed: bool
    halt_reason: Optional[str] = None  # cancelled, failed, invalid, revision_limit, restart, ask_user
    verdict: Optional[ValidationVerdict] = None


class ResearchRunner:
    """Drives one session through a planned list of steps."""

    def __init__(
        self,
        manager: SessionManager,
        agent: ResearchAgent,
        config: Optional[ResearchConfig] = None,
        on_step: Optional[StepCallback] = None,
    ):
        self.manager = manager
        self.agent = agent
        self.config = config or ResearchConfig()
        self.on_step = on_step
        self._cancelled = asyncio.Event()

    def cancel(self) -> None:
        """Stop before the next step starts."""
        self._cancelled.set()

    async def execute(self, goal: str, step: Step, state: SessionState) -> tuple[StepResult, SessionState]:
        """Run one step and attach its verdict (code steps only)."""
        result, state = await self.manager.run_step(step, state)
        if self.config.validate_steps and step.kind.is_code:
            try:
                verdict = await self.agent.validate(goal, step, result, state.context)
            except CedarError:
                self._fail(state)
                raise
            state.steps[-1] = state.steps[-1].model_copy(update={"verdict": verdict})
        if self.on_step is not None:
            self.on_step(state.steps[-1])
        return result, state

    async def run(
        self,
        goal: str,
        state: SessionState,
        steps: Optional[List[Step]] = None,
    ) -> RunOutcome:
        """
        Plan (unless ``steps`` is given) and execute until done or halted.

        Planned indices are provisional: each step is renumbered when it
        runs so indices stay monotonic when revisions are interleaved.
        A model or executor error marks the session failed and propagates.
        """
        try:
            return await self._run(goal, state, steps)
        except CedarError:
            self._fail(state)
            raise

    async def _run(self, goal: str, state: SessionState, steps: Optional[List[Step]]) -> RunOutcome:
        state.goal = state.goal or goal
        if steps is None:
            steps = await self.agent.plan(goal, start_index=state.next_index())

        for planned in steps:
            step = planned.model_copy(update={"index": state.next_index()})
            revisions = 0

            while True:
                if self._cancelled.is_set():
                    return self._halt(state, "cancelled")

                result, state = await self.execute(goal, step, state)
                verdict = state.steps[-1].verdict

                if verdict is None:
                    if result.succeeded:
                        break
                    return self._halt(state, "failed")

                action = verdict.next_action
                if action == NextAction.CONTINUE:
                    if self.config.stop_on_invalid and not verdict.valid:
                        return self._halt(state, "invalid", verdict)
                    break

                if action == NextAction.REVISE:
                    if revisions >= self.config.max_revisions:
                        return self._halt(state, "revision_limit", verdict)
                    revisions += 1
                    step = await self.agent.revise(
                        goal, step, result, verdict,
                        index=state.next_index(),
                        context=state.context,
                    )
                    logger.info("Step %d revised as step %d", step.revises, step.index)
                    continue

                return self._halt(state, action.value, verdict)

        state.status = SessionStatus.COMPLETED
        state.touch()
        return RunOutcome(session=state, completed=True)

    @staticmethod
    def _halt(
        state: SessionState,
        reason: str,
        verdict: Optional[ValidationVerdict] = None,
    ) -> RunOutcome:
        logger.info("Session %s halted: %s", state.session_id, reason)
        state.status = SessionStatus.HALTED
        state.touch()
        return RunOutcome(session=state, completed=False, halt_reason=reason, verdict=verdict)

    @staticmethod
    def _fail(state: SessionState) -> None:
        logger.warning("Session %s failed", state.session_id)
        state.status = SessionStatus.FAILED
        state.touch()
