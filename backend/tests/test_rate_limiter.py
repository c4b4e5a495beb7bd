"""Tests for per-user fixed-window admission control."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from parley.core import ErrorCode, RateLimitError
from parley.services import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_fourth_request_in_window_is_rejected() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=3, window_seconds=60, clock=clock)

    for _ in range(3):
        limiter.check("alice")

    with pytest.raises(RateLimitError) as exc:
        limiter.check("alice")
    assert exc.value.code == ErrorCode.RATE_LIMITED
    assert exc.value.status_code == 429


def test_window_resets_after_expiry() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=3, window_seconds=60, clock=clock)
    for _ in range(3):
        limiter.check("alice")

    clock.now += 60
    limiter.check("alice")
    assert limiter.current_count("alice") == 1


def test_users_have_independent_windows() -> None:
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
    limiter.check("alice")
    limiter.check("bob")
    with pytest.raises(RateLimitError):
        limiter.check("alice")


def test_disabled_limiter_always_passes() -> None:
    limiter = RateLimiter(enabled=False, max_requests=1, window_seconds=60)
    for _ in range(10):
        limiter.check("alice")
    assert limiter.current_count("alice") == 0


def test_reset_clears_state() -> None:
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
    limiter.check("alice")
    limiter.reset("alice")
    limiter.check("alice")

    limiter.reset()
    assert limiter.current_count("alice") == 0


def test_rejection_reports_retry_after() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    limiter.check("alice")
    clock.now += 15

    with pytest.raises(RateLimitError) as exc:
        limiter.check("alice")
    assert exc.value.details["retry_after_seconds"] == 45.0


def test_concurrent_checks_for_one_user_admit_exactly_the_limit() -> None:
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=FakeClock())
    workers = 32
    barrier = threading.Barrier(workers)

    def attempt(_: int) -> bool:
        barrier.wait()
        try:
            limiter.check("alice")
        except RateLimitError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, range(workers)))

    assert results.count(True) == 5
    assert limiter.current_count("alice") == workers
