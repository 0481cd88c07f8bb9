from __future__ import annotations

import logging
import os
import time
from typing import List

import httpx

from .base import ChatMessage, LLMBackend
from ..infrastructure.errors import ModelCallError, ModelResponseError

logger = logging.getLogger("cedar.llm")


class AnthropicBackend(LLMBackend):
    """
    Minimal Anthropic Messages API backend using HTTPX.

    Features:
    - System messages folded into the top-level ``system`` field
    - Token usage tracking across calls
    """

    def __init__(self, model: str, api_key: str | None = None, timeout: float = 180.0):
        self.model = model
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ModelCallError("ANTHROPIC_API_KEY not set")

        self._client = httpx.AsyncClient(
            base_url="https://api.anthropic.com/v1",
            timeout=timeout,
        )

        self._total_input_tokens = 0
        self._total_output_tokens = 0

    @property
    def token_usage(self) -> dict:
        """Return current token usage statistics."""
        return {
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
            "total_tokens": self._total_input_tokens + self._total_output_tokens,
        }

    def _update_token_usage(self, usage: dict) -> None:
        self._total_input_tokens += usage.get("input_tokens", 0)
        self._total_output_tokens += usage.get("output_tokens", 0)

    async def acomplete(
        self,
        messages: List[ChatMessage],
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> str:
        start_time = time.perf_counter()

        # Anthropic requires extracting system messages separately
        system_parts = []
        anthropic_messages = []
        for msg in messages:
            if msg["role"] == "system":
                system_parts.append(msg["content"])
            else:
                anthropic_messages.append({"role": msg["role"], "content": msg["content"]})

        payload = {
            "model": self.model,
            "messages": anthropic_messages,
            "temperature": temperature,
            "max_tokens": max_tokens or 4096,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }

        try:
            resp = await self._client.post("/messages", json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = e.response.json().get("error", {}).get("message", e.response.text)
            except ValueError:
                detail = e.response.text
            raise ModelCallError(
                f"Anthropic returned HTTP {e.response.status_code}: {detail[:500]}",
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise ModelCallError("Anthropic request failed", original_error=e) from e

        try:
            data = resp.json()
        except ValueError as e:
            raise ModelCallError(
                "Anthropic returned a non-JSON body",
                context={"body": resp.text[:500]},
                original_error=e,
            ) from e
        if isinstance(data, dict) and "usage" in data:
            self._update_token_usage(data["usage"])

        try:
            result = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ModelCallError("Unexpected Anthropic response shape", original_error=e) from e
        if not isinstance(result, str):
            raise ModelResponseError(
                f"Anthropic reply has no text content (got {type(result).__name__})",
                raw_response=str(result),
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug("anthropic %s completed in %.0fms", self.model, duration_ms)
        return result

    async def aclose(self) -> None:
        await self._client.aclose()
