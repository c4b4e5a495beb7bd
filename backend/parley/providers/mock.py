"""Offline provider that replays a canned reply. Used for local runs and tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from parley.providers.base import BaseProvider, ChatRequest, ProviderType, StreamDelta

DEFAULT_REPLY = "Hello! This is a mock reply from Parley."


class MockProvider(BaseProvider):
    provider_type = ProviderType.MOCK

    def __init__(
        self,
        reply: str = DEFAULT_REPLY,
        delay_seconds: float = 0.01,
        model: str = "mock-model",
    ):
        self.reply = reply
        self.delay_seconds = delay_seconds
        self.model = model

    @property
    def default_model(self) -> str:
        return self.model

    async def chat_once(self, request: ChatRequest) -> str:
        return self.reply

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamDelta]:
        for ch in self.reply:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            yield StreamDelta.of_text(ch)

        prompt_tokens = sum(len(m.content.split()) for m in request.messages)
        yield StreamDelta.of_usage(prompt_tokens, len(self.reply.split()))

