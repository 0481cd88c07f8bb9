from __future__ import annotations

import logging
import os
from typing import List

import httpx

from .base import ChatMessage, LLMBackend
from ..infrastructure.errors import ModelCallError, ModelResponseError

logger = logging.getLogger("cedar.llm")


class OpenAIBackend(LLMBackend):
    """
    Minimal OpenAI Chat Completions backend using HTTPX.
    """

    def __init__(self, model: str, api_key: str | None = None, timeout: float = 60.0):
        self.model = model
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ModelCallError("OPENAI_API_KEY not set")

        self._client = httpx.AsyncClient(
            base_url="https://api.openai.com/v1",
            timeout=timeout,
        )

    async def acomplete(
        self,
        messages: List[ChatMessage],
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        logger.debug("POST /chat/completions model=%s messages=%d", self.model, len(messages))
        try:
            resp = await self._client.post(
                "/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ModelCallError(
                f"OpenAI returned HTTP {e.response.status_code}",
                context={"body": e.response.text[:500]},
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise ModelCallError("OpenAI request failed", original_error=e) from e

        try:
            data = resp.json()
        except ValueError as e:
            raise ModelCallError(
                "OpenAI returned a non-JSON body",
                context={"body": resp.text[:500]},
                original_error=e,
            ) from e
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ModelCallError("Unexpected OpenAI response shape", original_error=e) from e

        # null content: refusals and tool-call replies
        if not isinstance(content, str):
            raise ModelResponseError(
                f"OpenAI reply has no text content (got {type(content).__name__})",
                raw_response=str(content),
            )
        return content

    async def aclose(self) -> None:
        await self._client.aclose()
