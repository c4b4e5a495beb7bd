"""
Per-run output channel and SSE serialization.

The worker (and the timeout watcher) push events into the channel; the
HTTP response drains it. Closing is idempotent from either side and
fires the registered close callbacks exactly once.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from parley.core import AppError, get_logger
from parley.core.metrics import metrics

logger = get_logger(__name__)

_CLOSED = object()


def format_sse_event(event: str, payload: dict[str, Any]) -> str:
    """Serialize an event to SSE format."""
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event}\ndata: {data}\n\n"


def format_sse_comment(comment: str = "ping") -> str:
    """Serialize an SSE comment (used for keep-alives)."""
    return f": {comment}\n\n"


@dataclass(frozen=True)
class StreamEvent:
    """One client-facing event: ``delta``, ``done`` or ``error``."""

    type: str
    payload: dict[str, Any]

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls("delta", {"type": "delta", "text": text})

    @classmethod
    def done(cls, input_tokens: int, output_tokens: int) -> "StreamEvent":
        return cls(
            "done",
            {"type": "done", "inputTokens": input_tokens, "outputTokens": output_tokens},
        )

    @classmethod
    def error(cls, code: str, message: str) -> "StreamEvent":
        return cls("error", {"type": "error", "code": code, "message": message})

    @classmethod
    def from_error(cls, exc: AppError) -> "StreamEvent":
        return cls.error(exc.code.value, exc.message)

    @property
    def is_terminal(self) -> bool:
        return self.type in ("done", "error")

    def to_sse(self) -> str:
        return format_sse_event(self.type, self.payload)


class OutputChannel:
    """Bounded lifetime event queue between one run and one client."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = asyncio.Event()
        self._finished = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def finished(self) -> bool:
        """True once a terminal event was queued."""
        return self._finished

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already closed."""
        if self.closed:
            callback()
            return
        self._callbacks.append(callback)

    def send(self, event: StreamEvent) -> bool:
        """Queue a non-terminal event. Returns False once closed or finished."""
        if self.closed or self._finished:
            return False
        self._queue.put_nowait(event)
        return True

    def finish(self, event: StreamEvent) -> bool:
        """Queue the single terminal event. Later calls are ignored."""
        if self.closed or self._finished:
            return False
        self._finished = True
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        self._queue.put_nowait(_CLOSED)
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Channel close callback failed")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def receive(self, timeout: float | None = None) -> StreamEvent | None:
        """
        Wait for the next event. Returns None once the channel is drained
        and closed.

        Raises:
            TimeoutError: If ``timeout`` elapses with nothing to read.
        """
        if timeout:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        else:
            item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Iterate events until close. Leaving the loop closes the channel."""
        try:
            while (event := await self.receive()) is not None:
                yield event
        finally:
            self.close()

    async def iter_sse(self, ping_interval: float = 0.0) -> AsyncIterator[str]:
        """
        Render events as SSE frames for a StreamingResponse.

        Emits ``: ping`` comments while idle. A client disconnect ends this
        generator, which closes the channel.
        """
        try:
            while True:
                try:
                    event = await self.receive(timeout=ping_interval or None)
                except TimeoutError:
                    metrics.increment("sse_pings_sent")
                    yield format_sse_comment()
                    continue
                if event is None:
                    break
                yield event.to_sse()
        finally:
            self.close()
