"""
Base provider interface.

Defines the contract that all LLM providers must implement.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum


class ProviderType(str, Enum):
    """Supported provider types."""

    OPENAI = "openai"
    GROQ = "groq"
    MOCK = "mock"


@dataclass(frozen=True)
class ChatMessage:
    """A single role-tagged prompt entry."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """Request for chat completion."""

    messages: list[ChatMessage]
    model: str
    temperature: float = 0.7
    max_tokens: int | None = None
    top_p: float | None = None


@dataclass(frozen=True)
class StreamDelta:
    """
    One fragment emitted by a provider stream.

    ``text`` fragments concatenate in arrival order. Token counts are
    cumulative totals reported by the upstream, not increments.
    """

    text: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None

    @classmethod
    def of_text(cls, text: str) -> "StreamDelta":
        return cls(text=text)

    @classmethod
    def of_usage(cls, input_tokens: int | None, output_tokens: int | None) -> "StreamDelta":
        return cls(input_tokens=input_tokens, output_tokens=output_tokens)

    @property
    def has_usage(self) -> bool:
        return self.input_tokens is not None or self.output_tokens is not None


class BaseProvider(ABC):
    """
    Abstract base class for LLM providers.

    One implementation is selected at startup from configuration; the
    chat pipeline only ever talks to this interface.
    """

    provider_type: ProviderType

    @property
    def provider_name(self) -> str:
        return self.provider_type.value

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model used when the caller does not pick one."""
        ...

    async def aclose(self) -> None:
        """Close any underlying resources (optional)."""
        return None

    @abstractmethod
    async def chat_once(self, request: ChatRequest) -> str:
        """
        Send a chat request and wait for the complete reply text.

        Raises:
            ProviderError: If the provider returns an error
            ProviderUnavailableError: If the provider is not reachable
        """
        ...

    @abstractmethod
    def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamDelta]:
        """
        Send a chat request and stream the reply.

        The returned iterator is finite and cannot be restarted; a retry
        must call ``chat_stream`` again. Only one network attempt is made.

        Yields:
            StreamDelta objects as they arrive

        Raises:
            ProviderError: If the provider fails mid-stream
        """
        ...
