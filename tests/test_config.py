from __future__ import annotations

import pytest

from Cedar.config.cedar_config import CedarConfig


@pytest.fixture(autouse=True)
def clear_cedar_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("CEDAR_DATA_DIR", "CEDAR_LLM_BACKEND", "CEDAR_PYTHON", "CEDAR_EXEC_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)


def test_defaults_without_file(tmp_path) -> None:
    config = CedarConfig(tmp_path / "missing.yaml")

    assert config.llm.backend == "openai:gpt-4o"
    assert config.execution.timeout_seconds == 300
    assert config.dependencies.auto_install is True
    assert config.research.max_revisions == 1
    assert "OPENAI_API_KEY" in config.execution.blocked_env_vars


def test_yaml_file_is_loaded(tmp_path) -> None:
    path = tmp_path / "cedar_config.yaml"
    path.write_text(
        "llm:\n"
        "  backend: anthropic:claude-sonnet-4-5\n"
        "  temperature: 0.0\n"
        "execution:\n"
        "  timeout_seconds: 30\n"
        "  echo_last_expression: true\n"
        "dependencies:\n"
        "  auto_install: false\n"
        "  pip_extra_args: [--quiet]\n"
        "storage:\n"
        f"  data_dir: {tmp_path / 'data'}\n"
        "research:\n"
        "  validate_steps: false\n"
    )

    config = CedarConfig(path)

    assert config.llm.backend == "anthropic:claude-sonnet-4-5"
    assert config.llm.temperature == 0.0
    assert config.execution.timeout_seconds == 30
    assert config.execution.echo_last_expression is True
    assert config.dependencies.auto_install is False
    assert config.dependencies.pip_extra_args == ["--quiet"]
    assert config.storage.resolve() == tmp_path / "data"
    assert config.research.validate_steps is False


def test_env_overrides_file_values(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "cedar_config.yaml"
    path.write_text("execution:\n  timeout_seconds: 30\n")
    monkeypatch.setenv("CEDAR_EXEC_TIMEOUT", "5")
    monkeypatch.setenv("CEDAR_LLM_BACKEND", "openai:gpt-4o-mini")

    config = CedarConfig(path)

    assert config.execution.timeout_seconds == 5
    assert config.llm.backend == "openai:gpt-4o-mini"


def test_empty_file_uses_defaults(tmp_path) -> None:
    path = tmp_path / "cedar_config.yaml"
    path.write_text("")
    assert CedarConfig(path).execution.max_output_bytes == 100_000


def test_from_dict_and_to_dict() -> None:
    config = CedarConfig.from_dict({"research": {"max_revisions": 3}, "storage": {"data_dir": "/tmp/x"}})

    data = config.to_dict()

    assert data["research"]["max_revisions"] == 3
    assert data["storage"]["data_dir"] == "/tmp/x"
    assert set(data) == {"llm", "execution", "dependencies", "storage", "research"}
