"""Streaming chat orchestration: admission, persistence, streaming, usage, teardown."""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import aclosing, suppress
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.orm import Session, sessionmaker

from parley.config import Settings
from parley.core import (
    AppError,
    ChatNotFoundError,
    ErrorCode,
    StreamTimeoutError,
    get_logger,
    request_id_ctx,
    stream_id_ctx,
    user_id_ctx,
)
from parley.core.metrics import metrics
from parley.db.repositories import append_message, find_chat_owned_by, list_turns
from parley.providers.base import BaseProvider, ChatMessage, ChatRequest, StreamDelta
from parley.services.prompt_builder import PromptBuilder
from parley.services.rate_limiter import RateLimiter
from parley.services.run_pool import RunPool
from parley.services.stream_channel import OutputChannel, StreamEvent
from parley.services.usage_ledger import UsageLedger

logger = get_logger(__name__)


class RunState(str, Enum):
    ADMITTING = "admitting"
    PERSISTING = "persisting"
    ASSEMBLING = "assembling"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CLOSED = "closed"
    REJECTED = "rejected"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StreamRun:
    """State for one user message being answered."""

    user_id: str
    chat_id: str
    content: str
    model: str
    temperature: float
    max_tokens: int | None
    top_p: float | None = None
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str | None = None
    channel: OutputChannel = field(default_factory=OutputChannel)
    state: RunState = RunState.ADMITTING
    outcome: RunState | None = None
    buffer: list[str] = field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None
    upstream: asyncio.Task | None = None
    timeout_handle: asyncio.TimerHandle | None = None
    started_at: float = field(default_factory=time.monotonic)
    upstream_disposals: int = 0
    _disposed: bool = False

    @property
    def text(self) -> str:
        return "".join(self.buffer)

    @property
    def ended(self) -> bool:
        return self.outcome is not None

    def end(self, outcome: RunState) -> bool:
        """Record the terminal outcome. Only the first call wins."""
        if self.outcome is not None:
            return False
        self.outcome = outcome
        if outcome is not RunState.CLOSED:
            self.state = outcome
        return True

    def dispose_upstream(self) -> bool:
        """Cancel the provider subscription. Safe to call repeatedly."""
        if self._disposed:
            return False
        self._disposed = True
        self.upstream_disposals += 1
        if self.upstream is not None and not self.upstream.done():
            self.upstream.cancel()
        return True


def apply_delta(run: StreamRun, delta: StreamDelta) -> bool:
    """
    Fold one provider delta into the run and forward its text.

    Returns False when the client is gone and streaming should stop.
    """
    if delta.text:
        run.buffer.append(delta.text)
        if not run.channel.send(StreamEvent.delta(delta.text)):
            return False
    if delta.has_usage:
        run.input_tokens = delta.input_tokens
        run.output_tokens = delta.output_tokens
    return True


class ChatService:
    """Runs chat turns on the worker pool and streams results to an OutputChannel."""

    def __init__(
        self,
        *,
        provider: BaseProvider,
        session_factory: sessionmaker[Session],
        pool: RunPool,
        rate_limiter: RateLimiter,
        prompt_builder: PromptBuilder,
        usage_ledger: UsageLedger,
        settings: Settings,
    ):
        self.provider = provider
        self.session_factory = session_factory
        self.pool = pool
        self.rate_limiter = rate_limiter
        self.prompt_builder = prompt_builder
        self.usage_ledger = usage_ledger
        self.settings = settings
        self._active: dict[str, StreamRun] = {}

    @property
    def active_runs(self) -> int:
        return len(self._active)

    async def send_message(
        self,
        user_id: str,
        chat_id: str,
        content: str,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> OutputChannel:
        """
        Submit one user message and return the channel its events arrive on.

        Waits only for room in the worker backlog; everything else happens
        on a pool worker.
        """
        run = self.create_run(
            user_id, chat_id, content, model=model, temperature=temperature, max_tokens=max_tokens
        )
        self._arm_timeout(run)
        await self.pool.submit(lambda: self.execute(run))
        return run.channel

    def create_run(
        self,
        user_id: str,
        chat_id: str,
        content: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> StreamRun:
        run = StreamRun(
            user_id=user_id,
            chat_id=chat_id,
            content=content,
            model=model or self.settings.llm_model or self.provider.default_model,
            temperature=(
                temperature if temperature is not None else self.settings.llm_temperature
            ),
            max_tokens=max_tokens if max_tokens is not None else self.settings.llm_max_tokens,
            top_p=self.settings.llm_top_p,
            request_id=request_id_ctx.get(),
        )
        self._active[run.run_id] = run
        metrics.set_gauge("active_runs", float(len(self._active)))
        run.channel.on_close(lambda: self._teardown(run))
        return run

    async def execute(self, run: StreamRun) -> None:
        """Drive one run to a terminal state. Always leaves the channel closed."""
        if run.channel.closed:
            logger.info("Run abandoned before start", data={"run_id": run.run_id})
            return

        tokens = (
            stream_id_ctx.set(run.run_id),
            user_id_ctx.set(run.user_id),
            request_id_ctx.set(run.request_id),
        )
        try:
            run.state = RunState.ADMITTING
            self.rate_limiter.check(run.user_id)

            run.state = RunState.PERSISTING
            self._persist_user_turn(run)

            run.state = RunState.ASSEMBLING
            prompt = self.prompt_builder.build(self._load_history(run))
            request = ChatRequest(
                messages=prompt,
                model=run.model,
                temperature=run.temperature,
                max_tokens=run.max_tokens,
                top_p=run.top_p,
            )

            if run.channel.closed:
                return
            run.state = RunState.STREAMING
            if not await self._stream(run, request):
                return

            run.state = RunState.FINALIZING
            self._finalize(run)
        except AppError as exc:
            self._fail(run, exc)
        except Exception as exc:
            logger.exception("Unexpected error during chat run", exc_info=exc)
            self._fail(
                run,
                AppError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred"),
            )
        finally:
            run.dispose_upstream()
            run.channel.close()
            for var, token in zip((stream_id_ctx, user_id_ctx, request_id_ctx), tokens):
                var.reset(token)

    async def complete(
        self,
        user_id: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Blocking completion for ad hoc prompts. Nothing is persisted."""
        self.rate_limiter.check(user_id)
        request = ChatRequest(
            messages=self.prompt_builder.build_from_raw(messages),
            model=model or self.settings.llm_model or self.provider.default_model,
            temperature=temperature if temperature is not None else self.settings.llm_temperature,
            max_tokens=max_tokens if max_tokens is not None else self.settings.llm_max_tokens,
            top_p=self.settings.llm_top_p,
        )
        try:
            return await asyncio.wait_for(
                self.provider.chat_once(request),
                timeout=self.settings.stream_timeout_seconds,
            )
        except TimeoutError as exc:
            raise StreamTimeoutError(self.settings.stream_timeout_seconds) from exc

    def expire(self, run: StreamRun) -> None:
        """Timeout watcher: end the run with STREAM_TIMEOUT unless it already ended."""
        if run.ended or run.channel.closed:
            return
        run.end(RunState.CANCELLED)
        metrics.increment("runs_timed_out_total")
        logger.warning(
            "Chat run timed out",
            data={"run_id": run.run_id, "timeout_seconds": self.settings.stream_timeout_seconds},
        )
        run.dispose_upstream()
        run.channel.finish(StreamEvent.from_error(StreamTimeoutError(self.settings.stream_timeout_seconds)))
        run.channel.close()

    async def _stream(self, run: StreamRun, request: ChatRequest) -> bool:
        """Pump the provider until it finishes or the channel closes."""
        run.upstream = asyncio.create_task(self._pump(run, request), name=f"upstream-{run.run_id}")
        closed_waiter = asyncio.create_task(run.channel.wait_closed())
        try:
            done, _ = await asyncio.wait(
                {run.upstream, closed_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            closed_waiter.cancel()
            with suppress(asyncio.CancelledError):
                await closed_waiter

        if run.upstream not in done or run.upstream.cancelled():
            return False
        # Re-raises provider errors.
        run.upstream.result()
        return not run.channel.closed

    async def _pump(self, run: StreamRun, request: ChatRequest) -> None:
        async with aclosing(self.provider.chat_stream(request)) as stream:
            async for delta in stream:
                if not apply_delta(run, delta):
                    break

    def _persist_user_turn(self, run: StreamRun) -> None:
        with self.session_factory() as db:
            if find_chat_owned_by(db, run.user_id, run.chat_id) is None:
                raise ChatNotFoundError(run.chat_id)
            append_message(db, run.chat_id, "user", run.content)

    def _load_history(self, run: StreamRun) -> list[ChatMessage]:
        with self.session_factory() as db:
            return [ChatMessage(role=m.role, content=m.content) for m in list_turns(db, run.chat_id)]

    def _finalize(self, run: StreamRun) -> None:
        provider_name = self.provider.provider_name
        with self.session_factory() as db:
            message = append_message(
                db,
                run.chat_id,
                "assistant",
                run.text,
                provider=provider_name,
                model=run.model,
                token_in=run.input_tokens,
                token_out=run.output_tokens,
            )
            message_id = message.id

        self.usage_ledger.record(
            user_id=run.user_id,
            chat_id=run.chat_id,
            message_id=message_id,
            provider=provider_name,
            model=run.model,
            token_in=run.input_tokens,
            token_out=run.output_tokens,
        )

        if run.end(RunState.CLOSED):
            metrics.increment("runs_completed_total")
            run.channel.finish(StreamEvent.done(run.input_tokens or 0, run.output_tokens or 0))
            logger.info(
                "Chat run completed",
                data={
                    "run_id": run.run_id,
                    "chat_id": run.chat_id,
                    "input_tokens": run.input_tokens,
                    "output_tokens": run.output_tokens,
                },
            )

    def _fail(self, run: StreamRun, exc: AppError) -> None:
        outcome = (
            RunState.REJECTED
            if run.state in (RunState.ADMITTING, RunState.PERSISTING)
            else RunState.FAILED
        )
        if not run.end(outcome):
            return
        if outcome is RunState.FAILED:
            metrics.increment("runs_failed_total")
        logger.warning(
            "Chat run ended with error",
            data={"run_id": run.run_id, "code": exc.code.value, "state": outcome.value},
        )
        run.dispose_upstream()
        run.channel.finish(StreamEvent.from_error(exc))

    def _arm_timeout(self, run: StreamRun) -> None:
        loop = asyncio.get_running_loop()
        run.timeout_handle = loop.call_later(self.settings.stream_timeout_seconds, self.expire, run)

    def _teardown(self, run: StreamRun) -> None:
        """Close callback: runs once per channel, whoever closed it."""
        if run.end(RunState.CANCELLED):
            metrics.increment("runs_cancelled_total")
            logger.info("Chat run cancelled by client", data={"run_id": run.run_id})
        if run.timeout_handle is not None:
            run.timeout_handle.cancel()
        run.dispose_upstream()
        run.state = RunState.CLOSED
        self._active.pop(run.run_id, None)
        metrics.set_gauge("active_runs", float(len(self._active)))
        metrics.increment("stream_duration_seconds", time.monotonic() - run.started_at)
