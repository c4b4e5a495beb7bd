"""
In-process run counters and gauges, exposed through ``GET /health``.
"""

from __future__ import annotations

import threading

RUN_COUNTERS = (
    "runs_completed_total",
    "runs_failed_total",
    "runs_cancelled_total",
    "runs_timed_out_total",
    "rate_limit_blocks_total",
    "usage_record_failures_total",
    "stream_duration_seconds",
    "sse_pings_sent",
)
RUN_GAUGES = ("active_runs", "queued_runs")


class MetricsRegistry:
    """Counters only grow; gauges hold the last value set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters = dict.fromkeys(RUN_COUNTERS, 0.0)
        self._gauges = dict.fromkeys(RUN_GAUGES, 0.0)

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0.0) + amount

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def snapshot(self) -> dict[str, dict[str, float]]:
        with self._lock:
            return {"counters": dict(self._counters), "gauges": dict(self._gauges)}


metrics = MetricsRegistry()
