"""
LLM Backend implementations for Cedar.

- AnthropicBackend: Claude API
- OpenAIBackend: OpenAI API
"""

from .base import LLMBackend, ChatMessage, parse_backend_name, create_backend
from .anthropic_backend import AnthropicBackend
from .openai_backend import OpenAIBackend

__all__ = [
    "LLMBackend",
    "ChatMessage",
    "parse_backend_name",
    "create_backend",
    "AnthropicBackend",
    "OpenAIBackend",
]
