"""Usage reporting endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from parley.api.deps import CurrentUserId
from parley.db import get_db
from parley.db.repositories import list_usage_logs, sum_user_tokens

router = APIRouter(tags=["usage"])


@router.get("/usage")
def usage_route(
    user_id: CurrentUserId,
    chat_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    token_in, token_out = sum_user_tokens(db, user_id)
    records = list_usage_logs(db, user_id, chat_id=chat_id, limit=limit, offset=offset)
    return {
        "totals": {"token_in": token_in, "token_out": token_out},
        "records": [
            {
                "id": r.id,
                "chat_id": r.chat_id,
                "message_id": r.message_id,
                "provider": r.provider,
                "model": r.model,
                "token_in": r.token_in,
                "token_out": r.token_out,
                "created_at": r.created_at.isoformat(),
            }
            for r in records
        ],
    }
