"""Append-only token usage accounting."""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from parley.core import get_logger
from parley.core.metrics import metrics
from parley.db.repositories import append_usage_log

logger = get_logger(__name__)


class UsageLedger:
    """Writes one usage row per completed run. Failures never reach the client."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def record(
        self,
        *,
        user_id: str,
        chat_id: str | None,
        message_id: str | None,
        provider: str,
        model: str,
        token_in: int | None,
        token_out: int | None,
    ) -> bool:
        """Persist a usage record. Returns False if the write failed."""
        try:
            with self._session_factory() as db:
                append_usage_log(
                    db,
                    user_id=user_id,
                    chat_id=chat_id,
                    message_id=message_id,
                    provider=provider,
                    model=model,
                    token_in=token_in or 0,
                    token_out=token_out or 0,
                )
        except Exception:
            metrics.increment("usage_record_failures_total")
            logger.exception(
                "Failed to record usage",
                data={"user_id": user_id, "chat_id": chat_id, "message_id": message_id},
            )
            return False
        return True
