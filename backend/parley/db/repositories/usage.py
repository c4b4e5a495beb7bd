"""
Usage repository for append-only token accounting.
"""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from parley.db.models import UsageLog


def append_usage_log(
    db: Session,
    *,
    user_id: str,
    chat_id: str | None,
    message_id: str | None,
    provider: str,
    model: str,
    token_in: int,
    token_out: int,
) -> UsageLog:
    """Insert a usage row; rows are never updated afterwards."""
    entry = UsageLog(
        user_id=user_id,
        chat_id=chat_id,
        message_id=message_id,
        provider=provider,
        model=model,
        token_in=token_in,
        token_out=token_out,
    )
    db.add(entry)
    db.commit()
    return entry


def list_usage_logs(
    db: Session,
    user_id: str,
    *,
    chat_id: str | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[UsageLog]:
    """List usage records for a user, newest first."""
    stmt = select(UsageLog).where(UsageLog.user_id == user_id)
    if chat_id:
        stmt = stmt.where(UsageLog.chat_id == chat_id)
    stmt = stmt.order_by(UsageLog.created_at.desc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars().all())


def sum_user_tokens(db: Session, user_id: str) -> tuple[int, int]:
    """Return total (token_in, token_out) recorded for a user."""
    stmt = select(
        func.coalesce(func.sum(UsageLog.token_in), 0),
        func.coalesce(func.sum(UsageLog.token_out), 0),
    ).where(UsageLog.user_id == user_id)
    token_in, token_out = db.execute(stmt).one()
    return int(token_in), int(token_out)
