"""
Tests for chat run orchestration (streaming, admission, cancellation, timeout).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from parley.config import Settings
from parley.core import ErrorCode, ProviderUnavailableError
from parley.core.metrics import metrics
from parley.db.models import UsageLog
from parley.db.repositories import append_message, create_chat, ensure_user, list_turns
from parley.providers import OpenAIProvider
from parley.providers.base import (
    BaseProvider,
    ChatMessage,
    ChatRequest,
    ProviderType,
    StreamDelta,
)
from parley.services import (
    ChatService,
    OutputChannel,
    PromptBuilder,
    RateLimiter,
    RunPool,
    RunState,
    StreamEvent,
    StreamRun,
    UsageLedger,
    apply_delta,
)


class ScriptedProvider(BaseProvider):
    """Provider stub that replays a script of deltas and exceptions."""

    provider_type = ProviderType.MOCK

    def __init__(self, script: list[StreamDelta | Exception], hang: bool = False):
        self.script = script
        self.hang = hang
        self.requests: list[ChatRequest] = []
        self.cancelled = asyncio.Event()

    @property
    def default_model(self) -> str:
        return "scripted-model"

    async def chat_once(self, request: ChatRequest) -> str:
        self.requests.append(request)
        return "pong"

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamDelta]:
        self.requests.append(request)
        try:
            for item in self.script:
                if isinstance(item, Exception):
                    raise item
                yield item
                await asyncio.sleep(0)
            if self.hang:
                await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            raise


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "llm_provider": "mock",
        "llm_model": "",
        "rate_limit_enabled": True,
        "rate_limit_max_requests": 100,
        "stream_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return Settings(**values)


@asynccontextmanager
async def running_service(
    provider: BaseProvider,
    session_factory: Any,
    ledger_factory: Any = None,
    **overrides: Any,
) -> AsyncIterator[ChatService]:
    settings = _settings(**overrides)
    pool = RunPool(size=2, capacity=4)
    await pool.start()
    service = ChatService(
        provider=provider,
        session_factory=session_factory,
        pool=pool,
        rate_limiter=RateLimiter.from_settings(settings),
        prompt_builder=PromptBuilder(),
        usage_ledger=UsageLedger(ledger_factory or session_factory),
        settings=settings,
    )
    try:
        yield service
    finally:
        await pool.stop()


async def _collect(channel: OutputChannel) -> list[tuple[str, dict[str, Any]]]:
    events = []
    async for event in channel.events():
        events.append((event.type, event.payload))
    return events


def _usage_rows(session_factory: Any) -> list[UsageLog]:
    with session_factory() as db:
        return list(db.execute(select(UsageLog)).scalars().all())


def _turns(session_factory: Any, chat_id: str) -> list[tuple[str, str]]:
    with session_factory() as db:
        return [(m.role, m.content) for m in list_turns(db, chat_id)]


@pytest.mark.asyncio
async def test_stream_end_to_end_persists_reply_and_usage(
    session_factory, db_session, user_id, chat_id
) -> None:
    """Deltas are forwarded in order, then done with the last usage pair."""
    append_message(db_session, chat_id, "user", "earlier")
    append_message(db_session, chat_id, "assistant", "earlier reply")
    provider = ScriptedProvider(
        [StreamDelta.of_text("A"), StreamDelta.of_text("B"), StreamDelta.of_usage(10, 2)]
    )
    async with running_service(provider, session_factory) as service:
        channel = await service.send_message(user_id, chat_id, "hi")
        events = await asyncio.wait_for(_collect(channel), timeout=5)

    assert events == [
        ("delta", {"type": "delta", "text": "A"}),
        ("delta", {"type": "delta", "text": "B"}),
        ("done", {"type": "done", "inputTokens": 10, "outputTokens": 2}),
    ]

    assert _turns(session_factory, chat_id) == [
        ("user", "earlier"),
        ("assistant", "earlier reply"),
        ("user", "hi"),
        ("assistant", "AB"),
    ]
    prompt = provider.requests[0].messages
    assert [(m.role, m.content) for m in prompt[1:]] == [
        ("user", "earlier"),
        ("assistant", "earlier reply"),
        ("user", "hi"),
    ]

    with session_factory() as db:
        assistant = list_turns(db, chat_id)[-1]
    assert assistant.provider == "mock"
    assert assistant.model == "scripted-model"
    assert (assistant.token_in, assistant.token_out) == (10, 2)

    rows = _usage_rows(session_factory)
    assert len(rows) == 1
    assert (rows[0].token_in, rows[0].token_out) == (10, 2)
    assert rows[0].message_id == assistant.id
    assert rows[0].user_id == user_id


@pytest.mark.asyncio
async def test_prompt_contains_system_and_history(session_factory, user_id, chat_id) -> None:
    provider = ScriptedProvider([StreamDelta.of_text("ok")])
    async with running_service(provider, session_factory) as service:
        await _collect(await service.send_message(user_id, chat_id, "first"))
        await _collect(await service.send_message(user_id, chat_id, "second"))

    last = provider.requests[-1]
    assert [m.role for m in last.messages] == ["system", "user", "assistant", "user"]
    assert [m.content for m in last.messages[1:]] == ["first", "ok", "second"]


@pytest.mark.asyncio
async def test_missing_usage_records_zero_tokens(session_factory, user_id, chat_id) -> None:
    provider = ScriptedProvider([StreamDelta.of_text("hello")])
    async with running_service(provider, session_factory) as service:
        events = await _collect(await service.send_message(user_id, chat_id, "hi"))

    assert events[-1] == ("done", {"type": "done", "inputTokens": 0, "outputTokens": 0})
    rows = _usage_rows(session_factory)
    assert [(r.token_in, r.token_out) for r in rows] == [(0, 0)]


@pytest.mark.asyncio
async def test_rate_limited_run_emits_single_error(session_factory, user_id, chat_id) -> None:
    """The second message in the window is rejected before any persistence."""
    provider = ScriptedProvider([StreamDelta.of_text("A")])
    async with running_service(provider, session_factory, rate_limit_max_requests=1) as service:
        await _collect(await service.send_message(user_id, chat_id, "one"))
        events = await _collect(await service.send_message(user_id, chat_id, "two"))

    assert len(events) == 1
    assert events[0][0] == "error"
    assert events[0][1]["code"] == ErrorCode.RATE_LIMITED.value
    assert _turns(session_factory, chat_id) == [("user", "one"), ("assistant", "A")]
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_unknown_chat_emits_chat_not_found(session_factory, user_id) -> None:
    provider = ScriptedProvider([StreamDelta.of_text("A")])
    async with running_service(provider, session_factory) as service:
        events = await _collect(await service.send_message(user_id, "missing-chat", "hi"))

    assert [e[1]["code"] for e in events] == [ErrorCode.CHAT_NOT_FOUND.value]
    assert provider.requests == []


@pytest.mark.asyncio
async def test_chat_owned_by_other_user_is_not_found(session_factory, db_session, chat_id) -> None:
    intruder = ensure_user(db_session, "intruder").id
    provider = ScriptedProvider([StreamDelta.of_text("A")])
    async with running_service(provider, session_factory) as service:
        events = await _collect(await service.send_message(intruder, chat_id, "hi"))

    assert [e[1]["code"] for e in events] == [ErrorCode.CHAT_NOT_FOUND.value]
    assert _turns(session_factory, chat_id) == []


@pytest.mark.asyncio
async def test_upstream_error_emits_error_and_persists_nothing(
    session_factory, user_id, chat_id
) -> None:
    provider = ScriptedProvider(
        [StreamDelta.of_text("A"), ProviderUnavailableError("Provider unavailable")]
    )
    async with running_service(provider, session_factory) as service:
        events = await _collect(await service.send_message(user_id, chat_id, "hi"))

    assert events == [
        ("delta", {"type": "delta", "text": "A"}),
        (
            "error",
            {
                "type": "error",
                "code": ErrorCode.PROVIDER_UNAVAILABLE.value,
                "message": "Provider unavailable",
            },
        ),
    ]
    assert _turns(session_factory, chat_id) == [("user", "hi")]
    assert _usage_rows(session_factory) == []


@pytest.mark.asyncio
async def test_unexpected_error_maps_to_internal_error(session_factory, user_id, chat_id) -> None:
    provider = ScriptedProvider([RuntimeError("boom")])
    async with running_service(provider, session_factory) as service:
        events = await _collect(await service.send_message(user_id, chat_id, "hi"))

    assert len(events) == 1
    assert events[0][1]["code"] == ErrorCode.INTERNAL_ERROR.value
    assert "boom" not in events[0][1]["message"]


@pytest.mark.asyncio
async def test_client_close_disposes_upstream(session_factory, user_id, chat_id) -> None:
    """Closing the channel mid-stream cancels the provider and stores nothing."""
    provider = ScriptedProvider([StreamDelta.of_text("A")], hang=True)
    async with running_service(provider, session_factory) as service:
        run = service.create_run(user_id, chat_id, "hi")
        task = asyncio.create_task(service.execute(run))

        first = await asyncio.wait_for(run.channel.receive(), timeout=5)
        assert first is not None and first.payload["text"] == "A"

        run.channel.close()
        await asyncio.wait_for(provider.cancelled.wait(), timeout=5)
        await asyncio.wait_for(task, timeout=5)

    assert run.outcome is RunState.CANCELLED
    assert run.state is RunState.CLOSED
    assert run.upstream_disposals == 1
    assert run.upstream is not None and run.upstream.cancelled()
    assert run.channel.send(StreamEvent.delta("late")) is False
    assert _turns(session_factory, chat_id) == [("user", "hi")]
    assert _usage_rows(session_factory) == []
    assert service.active_runs == 0


@pytest.mark.asyncio
async def test_run_timeout_emits_stream_timeout(session_factory, user_id, chat_id) -> None:
    provider = ScriptedProvider([StreamDelta.of_text("A")], hang=True)
    before = metrics.snapshot()["counters"]["runs_timed_out_total"]
    async with running_service(provider, session_factory, stream_timeout_seconds=0.2) as service:
        channel = await service.send_message(user_id, chat_id, "hi")
        events = await asyncio.wait_for(_collect(channel), timeout=5)
        await asyncio.wait_for(provider.cancelled.wait(), timeout=5)

    assert events[0] == ("delta", {"type": "delta", "text": "A"})
    assert events[-1][0] == "error"
    assert events[-1][1]["code"] == ErrorCode.STREAM_TIMEOUT.value
    assert len(events) == 2
    assert _turns(session_factory, chat_id) == [("user", "hi")]
    assert _usage_rows(session_factory) == []
    assert metrics.snapshot()["counters"]["runs_timed_out_total"] == before + 1


@pytest.mark.asyncio
async def test_usage_failure_does_not_break_done(session_factory, user_id, chat_id) -> None:
    def broken_factory():
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    before = metrics.snapshot()["counters"]["usage_record_failures_total"]
    provider = ScriptedProvider([StreamDelta.of_text("A"), StreamDelta.of_usage(3, 1)])
    async with running_service(provider, session_factory, ledger_factory=broken_factory) as service:
        events = await _collect(await service.send_message(user_id, chat_id, "hi"))

    assert events[-1] == ("done", {"type": "done", "inputTokens": 3, "outputTokens": 1})
    assert _turns(session_factory, chat_id) == [("user", "hi"), ("assistant", "A")]
    assert metrics.snapshot()["counters"]["usage_record_failures_total"] == before + 1


@pytest.mark.asyncio
async def test_complete_inserts_system_prompt_and_persists_nothing(
    session_factory, db_session
) -> None:
    user = ensure_user(db_session, "solo").id
    chat = create_chat(db_session, user).id
    provider = ScriptedProvider([])
    async with running_service(provider, session_factory) as service:
        reply = await service.complete(user, [ChatMessage(role="user", content="ping")])

    assert reply == "pong"
    assert [m.role for m in provider.requests[0].messages] == ["system", "user"]
    assert _turns(session_factory, chat) == []


@pytest.mark.asyncio
async def test_dispose_upstream_is_idempotent() -> None:
    async def forever() -> None:
        await asyncio.Event().wait()

    run = StreamRun(
        user_id="u", chat_id="c", content="hi", model="m", temperature=0.7, max_tokens=None
    )
    run.upstream = asyncio.create_task(forever())

    assert run.dispose_upstream() is True
    assert run.dispose_upstream() is False
    assert run.upstream_disposals == 1
    with pytest.raises(asyncio.CancelledError):
        await run.upstream


@pytest.mark.asyncio
async def test_apply_delta_on_closed_channel_does_not_raise() -> None:
    run = StreamRun(
        user_id="u", chat_id="c", content="hi", model="m", temperature=0.7, max_tokens=None
    )
    assert apply_delta(run, StreamDelta(text="x", input_tokens=1, output_tokens=None)) is True
    assert (run.input_tokens, run.output_tokens) == (1, None)

    run.channel.close()
    assert apply_delta(run, StreamDelta.of_text("y")) is False
    assert run.text == "xy"


@pytest.mark.asyncio
async def test_provider_throttling_is_distinct_from_admission(
    session_factory, user_id, chat_id
) -> None:
    """An upstream 429 surfaces as a provider error, not as our own rate limit."""
    provider = OpenAIProvider(
        api_key="k",
        base_url="http://throttled.test/v1",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(429, json={"error": {"message": "slow down"}})
        ),
    )
    try:
        async with running_service(provider, session_factory) as service:
            events = await _collect(await service.send_message(user_id, chat_id, "hi"))
    finally:
        await provider.aclose()

    assert len(events) == 1
    assert events[0][0] == "error"
    assert events[0][1]["code"] == ErrorCode.PROVIDER_RATE_LIMITED.value
    assert events[0][1]["code"] != ErrorCode.RATE_LIMITED.value
    assert _turns(session_factory, chat_id) == [("user", "hi")]
    assert _usage_rows(session_factory) == []


@pytest.mark.asyncio
async def test_timeout_racing_completion_keeps_single_done(
    session_factory, user_id, chat_id, monkeypatch
) -> None:
    """A timeout firing right after finalize neither adds an error nor disposes twice."""
    provider = ScriptedProvider([StreamDelta.of_text("A"), StreamDelta.of_usage(4, 1)])
    before = metrics.snapshot()["counters"]["runs_timed_out_total"]
    async with running_service(provider, session_factory) as service:
        run = service.create_run(user_id, chat_id, "hi")
        finalize = service._finalize

        def finalize_then_expire(r: StreamRun) -> None:
            finalize(r)
            service.expire(r)

        monkeypatch.setattr(service, "_finalize", finalize_then_expire)
        await asyncio.wait_for(service.execute(run), timeout=5)
        service.expire(run)
        events = await _collect(run.channel)

    assert events == [
        ("delta", {"type": "delta", "text": "A"}),
        ("done", {"type": "done", "inputTokens": 4, "outputTokens": 1}),
    ]
    assert run.outcome is RunState.CLOSED
    assert run.upstream_disposals == 1
    assert metrics.snapshot()["counters"]["runs_timed_out_total"] == before
    assert len(_usage_rows(session_factory)) == 1


@pytest.mark.asyncio
async def test_stream_leaves_no_pending_close_waiter(session_factory, user_id, chat_id) -> None:
    provider = ScriptedProvider([StreamDelta.of_text("A")])
    async with running_service(provider, session_factory) as service:
        run = service.create_run(user_id, chat_id, "hi")
        request = ChatRequest(messages=[ChatMessage(role="user", content="hi")], model="m")

        assert await service._stream(run, request) is True
        pending = [
            task
            for task in asyncio.all_tasks()
            if not task.done() and "wait_closed" in repr(task.get_coro())
        ]
        run.channel.close()

    assert pending == []
    assert run.text == "A"
