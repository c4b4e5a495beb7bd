"""Provider selection at startup."""

from __future__ import annotations

import httpx

from parley.config import Settings
from parley.core import get_logger
from parley.providers.base import BaseProvider, ProviderType
from parley.providers.mock import MockProvider
from parley.providers.openai_compat import GroqProvider, OpenAIProvider

logger = get_logger(__name__)

_HTTP_PROVIDERS: dict[str, type[OpenAIProvider] | type[GroqProvider]] = {
    ProviderType.OPENAI.value: OpenAIProvider,
    ProviderType.GROQ.value: GroqProvider,
}


def create_provider(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseProvider:
    """
    Build the single provider named by ``settings.llm_provider``.

    Args:
        settings: Application settings.
        transport: Optional httpx transport override (tests).
    """
    name = settings.llm_provider
    provider: BaseProvider

    if name == ProviderType.MOCK.value:
        provider = MockProvider(model=settings.llm_model or "mock-model")
    elif name in _HTTP_PROVIDERS:
        provider_cls = _HTTP_PROVIDERS[name]
        if not settings.llm_api_key:
            logger.warning("LLM_API_KEY not set", data={"provider": name})
        provider = provider_cls(
            api_key=settings.llm_api_key or None,
            base_url=settings.llm_base_url or None,
            model=settings.llm_model or None,
            timeout=settings.provider_timeout_seconds,
            connect_timeout=settings.provider_connect_timeout_seconds,
            max_completion_tokens=settings.llm_max_completion_tokens,
            reasoning_effort=settings.llm_reasoning_effort or None,
            transport=transport,
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {name}")

    logger.info(
        "LLM provider initialized",
        data={"provider": provider.provider_name, "model": provider.default_model},
    )
    return provider
