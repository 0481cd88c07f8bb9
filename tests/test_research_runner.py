from __future__ import annotations

import asyncio
import json

import pytest

from conftest import FakeBackend, FakeExecutor, FakeInstaller, fail, ok, plan_json, research_responder, verdict_json

from Cedar.agents.research_agent import ResearchAgent
from Cedar.config.cedar_config import ResearchConfig
from Cedar.execution.dependencies import DependencyResolver
from Cedar.execution.executor import ExecutorConfig, ScriptExecutor
from Cedar.execution.output_parser import OutputKind
from Cedar.infrastructure.errors import ModelResponseError
from Cedar.orchestrators.research_runner import ResearchRunner
from Cedar.session.manager import SessionManager
from Cedar.session.models import NextAction, SessionState, SessionStatus, Step, StepKind, StepStatus

MEAN_CODE = "values = [1, 2, 3, 4, 5]\nprint(sum(values) / len(values))"


def make_runner(executor, responder, config=None, on_step=None) -> tuple[ResearchRunner, FakeBackend]:
    backend = FakeBackend(responder)
    manager = SessionManager(executor, DependencyResolver(FakeInstaller()))
    return ResearchRunner(manager, ResearchAgent(backend), config, on_step=on_step), backend


def test_mean_goal_end_to_end() -> None:
    responder = research_responder(
        plan_json(
            ("narrative", "Approach", "Sum the values and divide by the count."),
            ("executable", "Mean", MEAN_CODE),
        ),
        verdicts=[verdict_json(True, "continue")],
    )
    runner, backend = make_runner(ScriptExecutor(ExecutorConfig(timeout_seconds=60)), responder)

    outcome = asyncio.run(runner.run("compute the mean of [1,2,3,4,5]", SessionState()))

    assert outcome.completed
    session = outcome.session
    assert session.status == SessionStatus.COMPLETED
    assert [s.index for s in session.steps] == [1, 2]
    narrative, code = session.steps
    assert narrative.verdict is None
    assert code.result.new_output == "3.0"
    assert code.result.output_kind == OutputKind.TEXT
    assert code.verdict.valid
    assert code.verdict.next_action == NextAction.CONTINUE
    # one plan call, one validation for the code step only
    assert len(backend.prompts) == 2


def test_revise_replaces_failed_step_with_new_index() -> None:
    revision = json.dumps({"kind": "executable", "title": "Mean", "content": MEAN_CODE})
    responder = research_responder(
        plan_json(("executable", "Mean", "print(sum(values) / len(values))"), ("executable", "Report", "print('done')")),
        verdicts=[
            verdict_json(False, "revise", issues=["values is undefined"]),
            verdict_json(True, "continue"),
            verdict_json(True, "continue"),
        ],
        revision=revision,
    )
    executor = FakeExecutor([
        fail("NameError: name 'values' is not defined"),
        ok("3.0\n"),
        ok("3.0\ndone\n"),
    ])
    runner, _ = make_runner(executor, responder)

    outcome = asyncio.run(runner.run("compute the mean", SessionState()))

    assert outcome.completed
    steps = outcome.session.steps
    assert [s.index for s in steps] == [1, 2, 3]
    assert steps[0].status == StepStatus.FAILED
    assert steps[1].revises == 1
    assert steps[1].result.new_output == "3.0"
    assert steps[2].title == "Report"
    assert steps[2].result.new_output == "done"
    assert executor.scripts[-1] == MEAN_CODE + "\nprint('done')\n"


def test_revision_limit_halts_the_run() -> None:
    revision = json.dumps({"kind": "executable", "content": "print(undefined_again)"})
    responder = research_responder(
        plan_json(("executable", "Mean", "print(undefined)")),
        verdicts=[verdict_json(False, "revise"), verdict_json(False, "revise")],
        revision=revision,
    )
    executor = FakeExecutor([fail("NameError: undefined"), fail("NameError: undefined_again")])
    runner, _ = make_runner(executor, responder, ResearchConfig(max_revisions=1))

    outcome = asyncio.run(runner.run("goal", SessionState()))

    assert not outcome.completed
    assert outcome.halt_reason == "revision_limit"
    assert len(outcome.session.steps) == 2
    assert outcome.session.status == SessionStatus.HALTED


def test_ask_user_hands_back_the_verdict() -> None:
    responder = research_responder(
        plan_json(("executable", "Load", "print('loaded')"), ("executable", "Never", "print('never')")),
        verdicts=[verdict_json(True, "ask_user", next_step_recommendation="Which column is the target?")],
    )
    executor = FakeExecutor([ok("loaded\n")])
    runner, _ = make_runner(executor, responder)

    outcome = asyncio.run(runner.run("predict churn", SessionState()))

    assert not outcome.completed
    assert outcome.halt_reason == "ask_user"
    assert outcome.verdict.next_step_recommendation == "Which column is the target?"
    assert len(executor.scripts) == 1


def test_failed_step_without_validation_halts() -> None:
    responder = research_responder(plan_json(("executable", "Boom", "1 / 0"), ("executable", "Next", "print(1)")))
    executor = FakeExecutor([fail("ZeroDivisionError: division by zero")])
    runner, backend = make_runner(executor, responder, ResearchConfig(validate_steps=False))

    outcome = asyncio.run(runner.run("goal", SessionState()))

    assert outcome.halt_reason == "failed"
    assert len(backend.prompts) == 1
    assert outcome.session.steps[0].verdict is None


def test_stop_on_invalid() -> None:
    responder = research_responder(
        plan_json(("executable", "Mean", "print(2.5)"), ("executable", "Next", "print(1)")),
        verdicts=[verdict_json(False, "continue", issues=["mean of [1..5] is 3.0"])],
    )
    runner, _ = make_runner(FakeExecutor([ok("2.5\n")]), responder, ResearchConfig(stop_on_invalid=True))

    outcome = asyncio.run(runner.run("goal", SessionState()))

    assert outcome.halt_reason == "invalid"
    assert outcome.verdict.issues == ["mean of [1..5] is 3.0"]


def test_cancel_stops_before_next_step() -> None:
    responder = research_responder(plan_json(
        ("executable", "One", "print(1)"),
        ("executable", "Two", "print(2)"),
    ))
    seen = []
    executor = FakeExecutor([ok("1\n"), ok("1\n2\n")])
    runner, _ = make_runner(executor, responder)

    def on_step(step) -> None:
        seen.append(step.index)
        runner.cancel()

    runner.on_step = on_step
    outcome = asyncio.run(runner.run("goal", SessionState()))

    assert outcome.halt_reason == "cancelled"
    assert seen == [1]
    assert len(executor.scripts) == 1


def test_given_steps_skip_planning_and_continue_numbering() -> None:
    executor = FakeExecutor([ok("1\n"), ok("1\n2\n")])
    runner, backend = make_runner(executor, research_responder(plan="unused"))
    state = SessionState()

    first = asyncio.run(runner.run("goal", state, steps=[]))
    assert first.completed

    state.steps.append(Step(index=4, kind=StepKind.NARRATIVE, content="earlier note"))
    outcome = asyncio.run(runner.run("goal", state, steps=[
        Step(index=1, kind=StepKind.EXECUTABLE, content="print(1)"),
        Step(index=2, kind=StepKind.EXECUTABLE, content="print(2)"),
    ]))

    assert [s.index for s in outcome.session.steps] == [4, 5, 6]
    assert all(p.startswith("## Mission\nJudge whether") for p in backend.prompts)


def test_unparsable_verdict_after_successful_step_fails_the_session() -> None:
    responder = research_responder(plan_json(("executable", "Mean", MEAN_CODE)), verdicts=["not json"])
    runner, _ = make_runner(FakeExecutor([ok("3.0\n")]), responder)
    state = SessionState()

    with pytest.raises(ModelResponseError):
        asyncio.run(runner.run("compute the mean", state))

    assert state.status == SessionStatus.FAILED
    assert state.steps[0].result.status == StepStatus.SUCCEEDED
    assert state.steps[0].verdict is None


def test_unparsable_plan_fails_the_session() -> None:
    runner, _ = make_runner(FakeExecutor(), research_responder(plan="Step 1: think hard."))
    state = SessionState()

    with pytest.raises(ModelResponseError):
        asyncio.run(runner.run("goal", state))

    assert state.status == SessionStatus.FAILED
    assert state.steps == []
