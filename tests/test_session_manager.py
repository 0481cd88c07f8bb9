from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import FakeExecutor, FakeInstaller, fail, ok

from Cedar.execution.dependencies import DependencyResolver, DependencyStatus
from Cedar.execution.executor import ExecutionResult, ExecutorConfig, ScriptExecutor
from Cedar.execution.output_parser import OutputKind
from Cedar.session.manager import SessionManager, append_code, extract_new_output
from Cedar.session.models import SessionState, SessionStatus, Step, StepKind, StepStatus


def code_step(index: int, content: str) -> Step:
    return Step(index=index, kind=StepKind.EXECUTABLE, title=f"step {index}", content=content)


def make_manager(executor, installer=None, **kwargs) -> tuple[SessionManager, FakeInstaller]:
    installer = installer or FakeInstaller()
    return SessionManager(executor, DependencyResolver(installer), **kwargs), installer


def test_new_output_is_trimmed_suffix_when_previous_is_prefix() -> None:
    assert extract_new_output("a\nb\n", "a\nb\n  c\n") == "c"


def test_new_output_is_whole_output_when_prefix_does_not_hold() -> None:
    current = "run at 12:01\n3.0\n"
    assert extract_new_output("run at 12:00\n", current) == current


def test_append_code_separates_steps_with_newlines() -> None:
    assert append_code("", "x = 1") == "x = 1\n"
    assert append_code("x = 1", "y = 2\n") == "x = 1\ny = 2\n"


def test_each_step_replays_the_full_script_in_order() -> None:
    executor = FakeExecutor([ok("1\n"), ok("1\n2\n"), ok("1\n2\n3\n")])
    manager, _ = make_manager(executor)
    state = SessionState()

    contents = ["a = 1\nprint(a)", "b = a + 1\nprint(b)", "print(a + b)"]
    for index, content in enumerate(contents, start=1):
        asyncio.run(manager.run_step(code_step(index, content), state))

    assert executor.scripts[0] == "a = 1\nprint(a)\n"
    assert executor.scripts[1] == "a = 1\nprint(a)\nb = a + 1\nprint(b)\n"
    assert executor.scripts[2] == state.script
    positions = [state.script.index(content) for content in contents]
    assert positions == sorted(positions)
    assert [s.result.new_output for s in state.steps] == ["1", "2", "3"]


def test_missing_module_triggers_one_install_and_one_retry() -> None:
    executor = FakeExecutor([
        fail("Traceback...\nModuleNotFoundError: No module named 'sklearn'"),
        ok("0.93\n"),
    ])
    manager, installer = make_manager(executor)
    state = SessionState()

    result, state = asyncio.run(manager.run_step(code_step(1, "import sklearn\nprint(0.93)"), state))

    assert installer.installed == ["scikit-learn"]
    assert len(executor.scripts) == 2
    assert executor.scripts[0] == executor.scripts[1]
    assert result.status == StepStatus.SUCCEEDED
    assert result.attempts == 2
    assert result.new_output == "0.93"
    assert any("Installed scikit-learn" in line for line in result.logs)
    assert manager.resolver.records["scikit-learn"].status == DependencyStatus.INSTALLED


def test_retry_failure_is_not_retried_again() -> None:
    missing = "ModuleNotFoundError: No module named 'polars'"
    executor = FakeExecutor([fail(missing), fail(missing), ok("never")])
    manager, installer = make_manager(executor)
    state = SessionState()

    result, state = asyncio.run(manager.run_step(code_step(1, "import polars"), state))

    assert installer.installed == ["polars"]
    assert len(executor.scripts) == 2
    assert result.status == StepStatus.FAILED
    assert state.status == SessionStatus.FAILED


def test_failed_install_still_gets_exactly_one_reexecution() -> None:
    missing = "ModuleNotFoundError: No module named 'nosuchpkg'"
    executor = FakeExecutor([fail(missing), fail(missing)])
    manager, installer = make_manager(executor, installer=FakeInstaller(succeed=False))

    result, _ = asyncio.run(manager.run_step(code_step(1, "import nosuchpkg"), SessionState()))

    assert installer.installed == ["nosuchpkg"]
    assert len(executor.scripts) == 2
    assert result.status == StepStatus.FAILED
    assert manager.resolver.records["nosuchpkg"].status == DependencyStatus.FAILED


def test_failure_without_signature_installs_nothing() -> None:
    executor = FakeExecutor([fail("ZeroDivisionError: division by zero")])
    manager, installer = make_manager(executor)

    result, state = asyncio.run(manager.run_step(code_step(1, "1 / 0"), SessionState()))

    assert installer.installed == []
    assert len(executor.scripts) == 1
    assert result.status == StepStatus.FAILED
    assert result.attempts == 1
    assert "ZeroDivisionError" in result.error
    assert result.formatted_output == result.error


def test_failed_step_is_recorded_but_not_committed_to_script() -> None:
    executor = FakeExecutor([ok("1\n"), fail("NameError: name 'zz' is not defined"), ok("1\n2\n")])
    manager, _ = make_manager(executor)
    state = SessionState()

    asyncio.run(manager.run_step(code_step(1, "print(1)"), state))
    asyncio.run(manager.run_step(code_step(2, "print(zz)"), state))
    assert state.script == "print(1)\n"
    assert state.last_output == "1\n"
    assert [s.status for s in state.steps] == [StepStatus.SUCCEEDED, StepStatus.FAILED]

    result, state = asyncio.run(manager.run_step(code_step(3, "print(2)"), state))
    assert executor.scripts[-1] == "print(1)\nprint(2)\n"
    assert result.new_output == "2"


def test_narrative_step_is_not_executed() -> None:
    executor = FakeExecutor()
    manager, _ = make_manager(executor)
    step = Step(index=1, kind=StepKind.NARRATIVE, content="  We start by loading the data.  ")

    result, state = asyncio.run(manager.run_step(step, SessionState()))

    assert executor.scripts == []
    assert result.status == StepStatus.SUCCEEDED
    assert result.new_output == "We start by loading the data."
    assert state.script == ""


def test_duplicate_step_index_is_rejected() -> None:
    manager, _ = make_manager(FakeExecutor([ok("")]))
    state = SessionState()
    asyncio.run(manager.run_step(code_step(1, "x = 1"), state))

    try:
        asyncio.run(manager.run_step(code_step(1, "y = 2"), state))
    except ValueError as e:
        assert "already recorded" in str(e)
    else:
        raise AssertionError("expected ValueError")


def test_json_output_is_classified() -> None:
    manager, _ = make_manager(FakeExecutor([ok('{"mean": 3.0, "n": 5}\n')]))
    result, _ = asyncio.run(manager.run_step(code_step(1, "..."), SessionState()))

    assert result.output_kind == OutputKind.JSON
    assert '"mean": 3.0' in result.formatted_output


def test_context_and_imports_are_tracked_after_success() -> None:
    manager, installer = make_manager(FakeExecutor([ok("")]))
    code = "import numpy as np\nimport json\ndata = [1, 2, 3]\ntotal = np.sum(data)"

    _, state = asyncio.run(manager.run_step(code_step(1, code), SessionState()))

    assert set(state.context.variables) == {"data", "total"}
    assert state.context.variables["data"].type_name == "list"
    assert state.context.variables["total"].type_name == "np.sum()"
    assert list(manager.resolver.records) == ["numpy"]
    assert installer.installed == []


def test_echo_last_expression_prints_trailing_expression() -> None:
    executor = FakeExecutor([ok("15\n")])
    manager, _ = make_manager(executor, echo_last_expression=True)

    asyncio.run(manager.run_step(code_step(1, "x = 5\nx * 3"), SessionState()))

    assert executor.scripts[0] == "x = 5\nprint(x * 3)\n"


def test_real_interpreter_replay_keeps_bindings() -> None:
    manager, _ = make_manager(ScriptExecutor(ExecutorConfig(timeout_seconds=60)))
    state = SessionState()

    asyncio.run(manager.run_step(code_step(1, "values = [1, 2, 3, 4, 5]\nprint('loaded')"), state))
    result, state = asyncio.run(manager.run_step(code_step(2, "print(sum(values) / len(values))"), state))

    assert result.status == StepStatus.SUCCEEDED
    assert result.raw_output.strip() == "loaded\n3.0"
    assert result.new_output == "3.0"
    assert result.output_kind == OutputKind.TEXT


def test_missing_module_scenario_with_real_interpreter(fake_site: Path) -> None:
    def fake_install(package: str) -> None:
        (fake_site / f"{package}.py").write_text("VALUE = 42\n")

    executor = ScriptExecutor(ExecutorConfig(
        timeout_seconds=60,
        env_overrides={"PYTHONPATH": str(fake_site)},
    ))
    manager, installer = make_manager(executor, installer=FakeInstaller(on_install=fake_install))

    result, state = asyncio.run(manager.run_step(
        code_step(1, "import cedar_fake_pkg\nprint(cedar_fake_pkg.VALUE)"),
        SessionState(),
    ))

    assert installer.installed == ["cedar_fake_pkg"]
    assert result.status == StepStatus.SUCCEEDED
    assert result.new_output == "42"
    assert any("No module named 'cedar_fake_pkg'" in line for line in result.logs)
    assert any(line.startswith("Installed cedar_fake_pkg") for line in result.logs)
    assert state.steps[0].result.attempts == 2


def test_new_output_after_truncated_output_is_not_lost() -> None:
    executor = ScriptExecutor(ExecutorConfig(timeout_seconds=60, max_output_bytes=50))
    manager, _ = make_manager(executor, max_output_bytes=50)
    state = SessionState()

    first, state = asyncio.run(manager.run_step(code_step(1, "print('x' * 100)"), state))
    second, state = asyncio.run(manager.run_step(code_step(2, "print('RESULT 3.0')"), state))

    assert first.new_output.startswith("x" * 50)
    assert "Output exceeded the size limit and was truncated" in first.logs
    assert second.status == StepStatus.SUCCEEDED
    assert second.new_output == "RESULT 3.0"
    assert state.last_output == "x" * 100 + "\nRESULT 3.0\n"


def test_timeout_never_triggers_an_install() -> None:
    timed_out = ExecutionResult(
        returncode=-1,
        stdout="",
        stderr="Script timed out after 1s\nModuleNotFoundError: No module named 'slowpkg'",
        timed_out=True,
    )
    executor = FakeExecutor([timed_out])
    manager, installer = make_manager(executor)

    result, state = asyncio.run(manager.run_step(code_step(1, "import slowpkg"), SessionState()))

    assert installer.installed == []
    assert len(executor.scripts) == 1
    assert result.timed_out
    assert result.attempts == 1
    assert state.status == SessionStatus.FAILED


def test_real_timeout_through_manager_installs_nothing() -> None:
    manager, installer = make_manager(ScriptExecutor(ExecutorConfig(timeout_seconds=1)))

    result, state = asyncio.run(manager.run_step(code_step(1, "import time\ntime.sleep(30)"), SessionState()))

    assert result.timed_out
    assert result.status == StepStatus.FAILED
    assert installer.installed == []
    assert state.script == ""


def test_cancelled_step_halts_session_and_records_nothing() -> None:
    manager, installer = make_manager(ScriptExecutor(ExecutorConfig(timeout_seconds=60)))
    state = SessionState()

    async def scenario() -> None:
        step = code_step(1, "import time\nprint('started', flush=True)\ntime.sleep(30)")
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(manager.run_step(step, state), timeout=1)

    asyncio.run(scenario())

    assert state.status == SessionStatus.HALTED
    assert state.steps == []
    assert state.script == ""
    assert installer.installed == []
