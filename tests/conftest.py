from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from Cedar.execution.dependencies import InstallOutcome
from Cedar.execution.executor import ExecutionResult
from Cedar.llm_backends.base import ChatMessage, LLMBackend


class FakeExecutor:
    """Returns queued results and remembers every script it was given."""

    def __init__(self, results: Optional[List[ExecutionResult]] = None) -> None:
        self.results = list(results or [])
        self.scripts: List[str] = []

    async def execute(self, script: str) -> ExecutionResult:
        self.scripts.append(script)
        if self.results:
            return self.results.pop(0)
        return ExecutionResult(returncode=0, stdout="", stderr="", execution_time_ms=1)


class FakeInstaller:
    def __init__(self, succeed: bool = True, on_install: Optional[Callable[[str], None]] = None) -> None:
        self.succeed = succeed
        self.on_install = on_install
        self.installed: List[str] = []

    async def install(self, package: str) -> InstallOutcome:
        self.installed.append(package)
        if not self.succeed:
            return InstallOutcome(success=False, output=f"ERROR: No matching distribution found for {package}")
        if self.on_install is not None:
            self.on_install(package)
        return InstallOutcome(success=True, output=f"Successfully installed {package}", version="1.0")

    async def list_installed(self, name_filter: Optional[str] = None) -> list[dict]:
        return [{"name": name, "version": "1.0"} for name in self.installed]


class FakeBackend(LLMBackend):
    """Answers each prompt through a responder function."""

    def __init__(self, responder: Callable[[str], str]) -> None:
        self.responder = responder
        self.prompts: List[str] = []
        self.closed = False

    async def acomplete(self, messages: List[ChatMessage], temperature: float = 0.2, max_tokens=None) -> str:
        prompt = messages[-1]["content"]
        self.prompts.append(prompt)
        return self.responder(prompt)

    async def aclose(self) -> None:
        self.closed = True


def ok(stdout: str, ms: int = 5) -> ExecutionResult:
    return ExecutionResult(returncode=0, stdout=stdout, stderr="", execution_time_ms=ms)


def fail(stderr: str, stdout: str = "", ms: int = 5) -> ExecutionResult:
    return ExecutionResult(returncode=1, stdout=stdout, stderr=stderr, execution_time_ms=ms)


def verdict_json(valid: bool = True, next_action: str = "continue", **extra) -> str:
    data = {
        "valid": valid,
        "confidence": 0.9,
        "issues": [],
        "suggestions": [],
        "next_action": next_action,
    }
    data.update(extra)
    return json.dumps(data)


def plan_json(*steps: tuple[str, str, str]) -> str:
    return json.dumps({"steps": [{"kind": k, "title": t, "content": c} for k, t, c in steps]})


def research_responder(plan: str, verdicts: Optional[List[str]] = None, revision: Optional[str] = None):
    """Route plan/validate/revise prompts to canned replies."""
    queue = list(verdicts or [])

    def respond(prompt: str) -> str:
        if prompt.startswith("## Mission\nBreak the research goal"):
            return plan
        if prompt.startswith("## Mission\nJudge whether"):
            return queue.pop(0) if queue else verdict_json()
        if prompt.startswith("## Mission\nRewrite one"):
            assert revision is not None, "unexpected revise call"
            return revision
        raise AssertionError(f"unexpected prompt: {prompt[:60]}")

    return respond


@pytest.fixture
def fake_site(tmp_path: Path) -> Path:
    """A directory on the child interpreter's PYTHONPATH where 'installs' land."""
    site = tmp_path / "site"
    site.mkdir()
    return site
