"""LLM provider interfaces and implementations."""

from parley.providers.base import (
    BaseProvider,
    ChatMessage,
    ChatRequest,
    ProviderType,
    StreamDelta,
)
from parley.providers.mock import MockProvider
from parley.providers.openai_compat import GroqProvider, OpenAICompatProvider, OpenAIProvider
from parley.providers.registry import create_provider

__all__ = [
    "BaseProvider",
    "ChatMessage",
    "ChatRequest",
    "ProviderType",
    "StreamDelta",
    "GroqProvider",
    "MockProvider",
    "OpenAICompatProvider",
    "OpenAIProvider",
    "create_provider",
]
