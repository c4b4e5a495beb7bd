"""OpenAI-compatible provider adapter (chat completions + SSE streaming)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from parley.core import ProviderBadResponseError, get_logger
from parley.providers.base import BaseProvider, ChatRequest, ProviderType, StreamDelta
from parley.providers.http_client import (
    create_http_client,
    map_transport_error,
    open_stream,
    parse_json,
    raise_for_status,
    send_request,
)

logger = get_logger(__name__)

_DONE_MARKER = "[DONE]"


class OpenAICompatProvider(BaseProvider):
    """
    Adapter for any upstream exposing ``POST /chat/completions``.

    Streaming responses are read line by line; each ``data:`` line is a
    JSON chunk until the ``[DONE]`` marker.
    """

    provider_type = ProviderType.OPENAI
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: int = 60,
        connect_timeout: int | None = None,
        max_completion_tokens: int | None = None,
        reasoning_effort: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.model = model or self.DEFAULT_MODEL
        self.max_completion_tokens = max_completion_tokens
        self.reasoning_effort = reasoning_effort or None
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = create_http_client(
            base_url=self.base_url,
            timeout_seconds=timeout,
            connect_timeout_seconds=connect_timeout,
            headers=headers,
            transport=transport,
        )

    @property
    def default_model(self) -> str:
        return self.model

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        """Translate a ChatRequest into the chat-completions JSON body."""
        payload: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": [m.to_dict() for m in request.messages],
            "temperature": request.temperature,
            "stream": stream,
        }
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        # Newer models reject max_tokens once max_completion_tokens is set.
        if self.max_completion_tokens:
            payload["max_completion_tokens"] = self.max_completion_tokens
        elif request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if self.reasoning_effort:
            payload["reasoning_effort"] = self.reasoning_effort
        if stream:
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def chat_once(self, request: ChatRequest) -> str:
        payload = self.build_payload(request, stream=False)
        response = await send_request(self._client, "POST", "/chat/completions", json=payload)
        raise_for_status(response)
        data = parse_json(response)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderBadResponseError(details={"reason": "missing choices"}) from exc
        return content or ""

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamDelta]:
        payload = self.build_payload(request, stream=True)
        response = await open_stream(
            self._client,
            "POST",
            "/chat/completions",
            json=payload,
            headers={"Accept": "text/event-stream"},
        )
        try:
            async for line in response.aiter_lines():
                data = _sse_data(line)
                if data is None:
                    continue
                if data == _DONE_MARKER:
                    break
                delta = self.parse_chunk(_decode_chunk(data))
                if delta is not None:
                    yield delta
        except httpx.HTTPError as exc:
            raise map_transport_error(exc) from exc
        finally:
            await response.aclose()

    def parse_chunk(self, chunk: dict[str, Any]) -> StreamDelta | None:
        """Extract text and/or usage from one decoded stream chunk."""
        text: str | None = None
        choices = chunk.get("choices") or []
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("delta") or {}).get("content")
            if isinstance(content, str) and content:
                text = content

        usage = self.extract_usage(chunk)
        input_tokens = output_tokens = None
        if usage:
            input_tokens = usage.get("prompt_tokens")
            output_tokens = usage.get("completion_tokens")

        if text is None and input_tokens is None and output_tokens is None:
            return None
        return StreamDelta(text=text, input_tokens=input_tokens, output_tokens=output_tokens)

    def extract_usage(self, chunk: dict[str, Any]) -> dict[str, Any] | None:
        usage = chunk.get("usage")
        return usage if isinstance(usage, dict) else None


class OpenAIProvider(OpenAICompatProvider):
    """OpenAI's hosted API."""

    provider_type = ProviderType.OPENAI


class GroqProvider(OpenAICompatProvider):
    """Groq's OpenAI-compatible endpoint."""

    provider_type = ProviderType.GROQ
    DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
    DEFAULT_MODEL = "llama-3.1-8b-instant"

    def extract_usage(self, chunk: dict[str, Any]) -> dict[str, Any] | None:
        usage = super().extract_usage(chunk)
        if usage:
            return usage
        # Groq reports streaming usage under x_groq on the final chunk.
        x_groq = chunk.get("x_groq")
        if isinstance(x_groq, dict) and isinstance(x_groq.get("usage"), dict):
            return x_groq["usage"]
        return None


def _sse_data(line: str) -> str | None:
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


def _decode_chunk(data: str) -> dict[str, Any]:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as exc:
        logger.warning("Malformed stream chunk", data={"chunk": data[:200]})
        raise ProviderBadResponseError(details={"chunk": data[:200]}) from exc
    if not isinstance(chunk, dict):
        raise ProviderBadResponseError(details={"chunk": data[:200]})
    return chunk
