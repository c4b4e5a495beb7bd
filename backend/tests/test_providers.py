"""Tests for provider adapters and startup selection."""

from __future__ import annotations

import json

import httpx
import pytest

from parley.config import Settings
from parley.core import (
    ErrorCode,
    ModelNotFoundError,
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderUnavailableError,
)
from parley.providers import (
    ChatMessage,
    ChatRequest,
    GroqProvider,
    MockProvider,
    OpenAIProvider,
    StreamDelta,
    create_provider,
)


def _sse(*payloads: object) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def _request(**kwargs) -> ChatRequest:
    return ChatRequest(
        messages=[ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")],
        model=kwargs.pop("model", "gpt-test"),
        temperature=0.5,
        max_tokens=kwargs.pop("max_tokens", 128),
        top_p=kwargs.pop("top_p", None),
    )


async def _drain(provider, request: ChatRequest) -> list[StreamDelta]:
    return [delta async for delta in provider.chat_stream(request)]


@pytest.mark.asyncio
async def test_openai_stream_parses_deltas_and_usage() -> None:
    """Text and usage chunks become deltas; [DONE] ends the stream."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = _sse(
            {"choices": [{"delta": {"role": "assistant", "content": ""}}]},
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}], "usage": None},
            {"choices": [], "usage": {"prompt_tokens": 10, "completion_tokens": 2}},
            "[DONE]",
            {"choices": [{"delta": {"content": "ignored"}}]},
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    provider = OpenAIProvider(
        api_key="test-key",
        base_url="http://openai.test/v1",
        transport=httpx.MockTransport(handler),
    )

    deltas = await _drain(provider, _request(top_p=0.9))

    assert deltas == [
        StreamDelta(text="Hel"),
        StreamDelta(text="lo"),
        StreamDelta(input_tokens=10, output_tokens=2),
    ]
    sent = seen[0]
    assert sent.url.path == "/v1/chat/completions"
    assert sent.headers["Authorization"] == "Bearer test-key"
    payload = json.loads(sent.content)
    assert payload["stream"] is True
    assert payload["stream_options"] == {"include_usage": True}
    assert payload["model"] == "gpt-test"
    assert payload["max_tokens"] == 128
    assert payload["top_p"] == 0.9
    assert payload["messages"][1] == {"role": "user", "content": "hi"}
    await provider.aclose()


@pytest.mark.asyncio
async def test_stream_skips_comments_and_blank_lines() -> None:
    body = b": keep-alive\n\nevent: message\ndata: {\"choices\":[{\"delta\":{\"content\":\"x\"}}]}\n\ndata: [DONE]\n\n"
    provider = OpenAIProvider(
        base_url="http://openai.test/v1",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body)),
    )

    assert await _drain(provider, _request()) == [StreamDelta(text="x")]
    await provider.aclose()


@pytest.mark.asyncio
async def test_malformed_chunk_raises_bad_response() -> None:
    provider = OpenAIProvider(
        base_url="http://openai.test/v1",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, content=b"data: {not json}\n\n")
        ),
    )

    with pytest.raises(ProviderBadResponseError) as exc:
        await _drain(provider, _request())
    assert exc.value.code == ErrorCode.PROVIDER_BAD_RESPONSE
    await provider.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error_cls"),
    [
        (401, ProviderAuthError),
        (403, ProviderAuthError),
        (404, ModelNotFoundError),
        (429, ProviderRateLimitedError),
        (500, ProviderUnavailableError),
        (400, ProviderError),
    ],
)
async def test_stream_status_errors_are_mapped(status: int, error_cls: type) -> None:
    provider = OpenAIProvider(
        base_url="http://openai.test/v1",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(status, json={"error": {"message": "nope"}})
        ),
    )

    with pytest.raises(error_cls) as exc:
        await _drain(provider, _request())
    assert type(exc.value) is error_cls
    assert exc.value.code is not ErrorCode.RATE_LIMITED
    await provider.aclose()


@pytest.mark.asyncio
async def test_connect_error_maps_to_provider_unavailable() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    provider = OpenAIProvider(
        base_url="http://down.test/v1", transport=httpx.MockTransport(handler)
    )

    with pytest.raises(ProviderUnavailableError):
        await _drain(provider, _request())
    assert calls == 1
    await provider.aclose()


@pytest.mark.asyncio
async def test_chat_once_returns_message_content() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": "pong"}}]})

    provider = OpenAIProvider(
        base_url="http://openai.test/v1",
        max_completion_tokens=256,
        reasoning_effort="low",
        transport=httpx.MockTransport(handler),
    )

    assert await provider.chat_once(_request()) == "pong"
    payload = seen[0]
    assert payload["stream"] is False
    assert "stream_options" not in payload
    assert payload["max_completion_tokens"] == 256
    assert "max_tokens" not in payload
    assert payload["reasoning_effort"] == "low"
    await provider.aclose()


@pytest.mark.asyncio
async def test_chat_once_without_choices_is_bad_response() -> None:
    provider = OpenAIProvider(
        base_url="http://openai.test/v1",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"id": "x"})),
    )

    with pytest.raises(ProviderBadResponseError):
        await provider.chat_once(_request())
    await provider.aclose()


@pytest.mark.asyncio
async def test_groq_reads_usage_from_x_groq() -> None:
    body = _sse(
        {"choices": [{"delta": {"content": "hey"}}]},
        {"choices": [{"delta": {}}], "x_groq": {"usage": {"prompt_tokens": 7, "completion_tokens": 1}}},
        "[DONE]",
    )
    provider = GroqProvider(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body)),
    )

    deltas = await _drain(provider, _request())

    assert deltas == [StreamDelta(text="hey"), StreamDelta(input_tokens=7, output_tokens=1)]
    assert provider.base_url == "https://api.groq.com/openai/v1"
    assert provider.provider_name == "groq"
    await provider.aclose()


@pytest.mark.asyncio
async def test_mock_provider_streams_reply_then_usage() -> None:
    provider = MockProvider(reply="hi there", delay_seconds=0)

    deltas = await _drain(provider, _request())

    assert "".join(d.text for d in deltas if d.text) == "hi there"
    assert deltas[-1] == StreamDelta(input_tokens=2, output_tokens=2)
    assert await provider.chat_once(_request()) == "hi there"


@pytest.mark.asyncio
async def test_create_provider_follows_settings() -> None:
    groq = create_provider(Settings(llm_provider="groq", llm_api_key="k", llm_model=""))
    assert isinstance(groq, GroqProvider)
    assert groq.default_model == "llama-3.1-8b-instant"
    await groq.aclose()

    openai = create_provider(
        Settings(llm_provider="openai", llm_api_key="k", llm_model="gpt-4.1-mini")
    )
    assert isinstance(openai, OpenAIProvider)
    assert openai.default_model == "gpt-4.1-mini"
    assert openai.base_url == "https://api.openai.com/v1"
    await openai.aclose()

    mock = create_provider(Settings(llm_provider="mock", llm_model=""))
    assert isinstance(mock, MockProvider)


def test_unknown_provider_is_rejected_by_settings() -> None:
    with pytest.raises(ValueError):
        Settings(llm_provider="ollama")
