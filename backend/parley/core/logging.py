"""
Structured logging for Parley.

Every record carries the ids of the request, caller and streaming run that
produced it. Request handlers set them in middleware; run workers set them
for the duration of a run since context does not follow work onto the pool.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_ctx: ContextVar[str | None] = ContextVar("user_id", default=None)
stream_id_ctx: ContextVar[str | None] = ContextVar("stream_id", default=None)

_CONTEXT_VARS = (
    ("request_id", request_id_ctx),
    ("user_id", user_id_ctx),
    ("stream_id", stream_id_ctx),
)


def _context_fields() -> dict[str, str]:
    return {key: value for key, var in _CONTEXT_VARS if (value := var.get())}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for local runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%H:%M:%S.%f")[:-3]
        fields = _context_fields()
        run = fields.get("stream_id", "-")[:8]
        request = fields.get("request_id", "-")[:8]

        line = (
            f"{timestamp} {color}{record.levelname:<8}{self.RESET} "
            f"[{request}/{run}] {record.name}: {record.getMessage()}"
        )
        data = getattr(record, "data", None)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that accepts a ``data`` keyword for structured fields."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple:
        extra = kwargs.setdefault("extra", {})
        if "data" in kwargs:
            extra["data"] = kwargs.pop("data")
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: str | None = None,
) -> None:
    """Install stdout (and optionally file) handlers on the root logger."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(StructuredFormatter() if json_output else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root.addHandler(file_handler)

    for noisy in ("uvicorn.access", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
