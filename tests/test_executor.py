from __future__ import annotations

import asyncio
import os

import pytest

from Cedar.execution.executor import TRUNCATION_MARKER, ExecutionResult, ExecutorConfig, ScriptExecutor
from Cedar.infrastructure.errors import ErrorCategory, ExecutorSpawnError


def run(script: str, **config) -> ExecutionResult:
    return asyncio.run(ScriptExecutor(ExecutorConfig(**config)).execute(script))


def test_successful_script_captures_stdout() -> None:
    result = run("print('hello')\nprint(2 + 2)")

    assert result.success
    assert result.returncode == 0
    assert result.stdout == "hello\n4\n"
    assert result.stderr == ""
    assert result.execution_time_ms >= 0


def test_failing_script_reports_traceback() -> None:
    result = run("print('before')\nraise ValueError('bad input')")

    assert not result.success
    assert result.returncode == 1
    assert result.stdout == "before\n"
    assert "ValueError: bad input" in result.stderr


def test_timeout_kills_the_script() -> None:
    result = run("import time\ntime.sleep(30)", timeout_seconds=1)

    assert result.timed_out
    assert not result.success
    assert "timed out after 1s" in result.stderr


def test_blocked_env_vars_are_hidden(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
    monkeypatch.setenv("CEDAR_VISIBLE", "yes")

    result = run(
        "import os\n"
        "print(os.environ.get('OPENAI_API_KEY', 'missing'))\n"
        "print(os.environ.get('CEDAR_VISIBLE'))"
    )

    assert result.stdout.split() == ["missing", "yes"]


def test_env_overrides_reach_the_script() -> None:
    result = run("import os\nprint(os.environ['CEDAR_FLAG'])", env_overrides={"CEDAR_FLAG": "on"})
    assert result.stdout.strip() == "on"


def test_large_output_is_truncated() -> None:
    result = run("print('x' * 5000)", max_output_bytes=100)

    assert result.truncated
    assert result.stdout.endswith(TRUNCATION_MARKER)
    assert len(result.stdout) == 100 + len(TRUNCATION_MARKER)


def test_non_ascii_output_round_trips() -> None:
    result = run("print('μ = 3.0 ± 0.1')")
    assert result.stdout.strip() == "μ = 3.0 ± 0.1"


def test_working_dir_is_used(tmp_path) -> None:
    (tmp_path / "data.csv").write_text("a,b\n1,2\n")
    result = run("print(open('data.csv').read().splitlines()[1])", working_dir=str(tmp_path))
    assert result.stdout.strip() == "1,2"


def test_missing_interpreter_raises_spawn_error() -> None:
    with pytest.raises(ExecutorSpawnError) as exc_info:
        run("print(1)", python_executable="/nonexistent/python3")

    assert exc_info.value.category == ErrorCategory.FATAL
    assert "/nonexistent/python3" in str(exc_info.value)


def test_unknown_config_key_is_rejected() -> None:
    with pytest.raises(ValueError):
        ExecutorConfig(timeout=10)


def test_truncation_counts_utf8_bytes() -> None:
    result = run("print('é' * 100)", max_output_bytes=51)

    assert result.truncated
    # 51 bytes hold 25 two-byte characters; the split 26th is dropped
    assert result.stdout == "é" * 25 + TRUNCATION_MARKER
    assert result.full_stdout == "é" * 100 + "\n"


def test_untruncated_output_has_no_full_copy() -> None:
    result = run("print('short')", max_output_bytes=100)

    assert result.full_stdout is None
    assert result.complete_stdout == "short\n"


def test_cancelling_execution_kills_and_reaps_the_child(tmp_path) -> None:
    pid_file = tmp_path / "pid"
    script = f"import os, time\nopen({str(pid_file)!r}, 'w').write(str(os.getpid()))\ntime.sleep(30)"

    async def scenario() -> int:
        task = asyncio.create_task(ScriptExecutor(ExecutorConfig(timeout_seconds=60)).execute(script))
        for _ in range(200):
            if pid_file.exists() and pid_file.read_text():
                break
            await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return int(pid_file.read_text())

    pid = asyncio.run(scenario())

    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
