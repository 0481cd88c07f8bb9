from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Literal, TypedDict

from ..infrastructure.errors import ModelCallError


MessageRole = Literal["system", "user", "assistant"]


class ChatMessage(TypedDict):
    role: MessageRole
    content: str


class LLMBackend(ABC):
    """
    Abstract interface for all LLM providers.

    Implementations make exactly one request per call. Transport and HTTP
    failures surface as ``ModelCallError``; callers decide what to do.
    """

    @abstractmethod
    async def acomplete(
        self,
        messages: List[ChatMessage],
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> str:
        ...

    async def aclose(self) -> None:
        """Release network resources. Backends without any may ignore this."""
        return None


def parse_backend_name(name: str) -> tuple[str, str]:
    """
    Parse backend string like 'openai:gpt-4o' -> ('openai', 'gpt-4o').
    """
    if ":" not in name:
        raise ModelCallError(
            f"Backend must look like 'provider:model', got {name!r}",
            context={"backend": name},
        )
    provider, model = name.split(":", 1)
    return provider, model


def create_backend(name: str, timeout: float = 60.0) -> LLMBackend:
    """Instantiate the backend named by a 'provider:model' string."""
    from .anthropic_backend import AnthropicBackend
    from .openai_backend import OpenAIBackend

    provider, model = parse_backend_name(name)
    if provider == "openai":
        return OpenAIBackend(model, timeout=timeout)
    if provider == "anthropic":
        return AnthropicBackend(model, timeout=timeout)
    raise ModelCallError(f"Unknown LLM provider: {provider}", context={"backend": name})
