"""Bounded pool of asyncio workers for LLM runs."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from parley.core import get_logger
from parley.core.metrics import metrics

logger = get_logger(__name__)

Job = Callable[[], Awaitable[None]]


class RunPool:
    """
    Fixed number of worker tasks draining a bounded job queue.

    ``submit`` waits while the backlog is full; no extra workers are
    ever spawned.
    """

    def __init__(self, size: int, capacity: int, name: str = "llm-worker"):
        self.size = size
        self.capacity = capacity
        self.name = name
        self._queue: asyncio.Queue[Job] | None = None
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def backlog(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def start(self) -> None:
        """Start the worker tasks."""
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.capacity)
        self._workers = [
            asyncio.create_task(self._worker_loop(), name=f"{self.name}-{i}")
            for i in range(self.size)
        ]
        logger.info("Run pool started", data={"workers": self.size, "capacity": self.capacity})

    async def stop(self) -> None:
        """Cancel workers and wait for them to exit."""
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._queue = None
        metrics.set_gauge("queued_runs", 0.0)
        logger.info("Run pool stopped")

    async def submit(self, job: Job) -> None:
        """Enqueue a job, waiting for room when the backlog is full."""
        if self._queue is None:
            raise RuntimeError("Run pool is not started")
        await self._queue.put(job)
        metrics.set_gauge("queued_runs", float(self._queue.qsize()))

    async def _worker_loop(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job = await queue.get()
            metrics.set_gauge("queued_runs", float(queue.qsize()))
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unhandled error in run worker")
            finally:
                queue.task_done()
