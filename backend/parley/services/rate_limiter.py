"""
Per-user fixed-window rate limiting.

State lives in process memory for the lifetime of the app. Each user id
gets its own lock so callers for different users never contend.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from parley.config import Settings
from parley.core import RateLimitError, get_logger
from parley.core.metrics import metrics

logger = get_logger(__name__)


@dataclass
class RateWindow:
    window_start: float
    count: int = 0


class RateLimiter:
    """Fixed-window counter keyed by user id."""

    def __init__(
        self,
        enabled: bool = True,
        max_requests: int = 30,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.enabled = enabled
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            enabled=settings.rate_limit_enabled,
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def check(self, user_id: str) -> None:
        """
        Count one request for ``user_id``.

        Raises:
            RateLimitError: If the user exceeded the limit for the current window.
        """
        if not self.enabled:
            return

        with self._lock_for(user_id):
            now = self._clock()
            window = self._windows.get(user_id)
            if window is None:
                window = self._windows[user_id] = RateWindow(window_start=now)
            elif now - window.window_start >= self.window_seconds:
                window.window_start = now
                window.count = 0

            window.count += 1
            if window.count <= self.max_requests:
                return
            retry_after = max(0.0, window.window_start + self.window_seconds - now)

        metrics.increment("rate_limit_blocks_total")
        logger.info(
            "Rate limit exceeded",
            data={"user_id": user_id, "limit": self.max_requests},
        )
        raise RateLimitError(
            "Too many requests, please try again later",
            details={
                "limit": self.max_requests,
                "window_seconds": self.window_seconds,
                "retry_after_seconds": round(retry_after, 3),
            },
        )

    def current_count(self, user_id: str) -> int:
        with self._lock_for(user_id):
            window = self._windows.get(user_id)
            return window.count if window else 0

    def reset(self, user_id: str | None = None) -> None:
        """Forget window state for one user, or for everyone."""
        with self._registry_lock:
            if user_id is None:
                self._windows.clear()
                self._locks.clear()
            else:
                self._windows.pop(user_id, None)
