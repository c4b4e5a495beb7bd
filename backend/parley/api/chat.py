"""Chat endpoints: chat management, streaming replies, ad hoc completions."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from parley.api.deps import ChatServiceDep, CurrentUserId
from parley.core import ChatNotFoundError
from parley.core.logging import request_id_ctx
from parley.db import get_db
from parley.db.repositories import (
    create_chat,
    delete_chat,
    ensure_user,
    find_chat_owned_by,
    list_turns,
    list_user_chats,
    update_chat_title,
)
from parley.providers.base import ChatMessage

router = APIRouter(tags=["chat"])


class CreateChatRequest(BaseModel):
    title: str | None = Field(None, max_length=255)


class UpdateChatRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class ChatResponse(BaseModel):
    id: str
    title: str
    created_at: str
    updated_at: str


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    created_at: str
    provider: str | None
    model: str | None
    token_in: int | None
    token_out: int | None


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    model: str | None = None
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, gt=0)


class RawMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class CompleteRequest(BaseModel):
    messages: list[RawMessage] = Field(..., min_length=1)
    model: str | None = None
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, gt=0)


def _chat_to_response(chat: Any) -> ChatResponse:
    return ChatResponse(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at.isoformat(),
        updated_at=chat.updated_at.isoformat(),
    )


def _message_to_response(message: Any) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        role=message.role,
        content=message.content,
        created_at=message.created_at.isoformat(),
        provider=message.provider,
        model=message.model,
        token_in=message.token_in,
        token_out=message.token_out,
    )


@router.post("/chats")
def create_chat_route(
    body: CreateChatRequest,
    user_id: CurrentUserId,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    ensure_user(db, user_id)
    chat = create_chat(db, user_id, title=body.title)
    return {"chat": _chat_to_response(chat)}


@router.get("/chats")
def list_chats_route(
    user_id: CurrentUserId,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    chats = list_user_chats(db, user_id)
    return {"chats": [_chat_to_response(chat) for chat in chats]}


@router.get("/chats/{chat_id}")
def get_chat_route(
    chat_id: str,
    user_id: CurrentUserId,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    chat = find_chat_owned_by(db, user_id, chat_id)
    if not chat:
        raise ChatNotFoundError(chat_id)
    return {"chat": _chat_to_response(chat)}


@router.patch("/chats/{chat_id}")
def rename_chat_route(
    chat_id: str,
    body: UpdateChatRequest,
    user_id: CurrentUserId,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    updated = update_chat_title(db, user_id, chat_id, body.title)
    if not updated:
        raise ChatNotFoundError(chat_id)
    return {"chat": _chat_to_response(updated)}


@router.delete("/chats/{chat_id}")
def delete_chat_route(
    chat_id: str,
    user_id: CurrentUserId,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if not delete_chat(db, user_id, chat_id):
        raise ChatNotFoundError(chat_id)
    return {"status": "deleted", "chat_id": chat_id}


@router.get("/chats/{chat_id}/messages")
def list_messages_route(
    chat_id: str,
    user_id: CurrentUserId,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if not find_chat_owned_by(db, user_id, chat_id):
        raise ChatNotFoundError(chat_id)
    messages = list_turns(db, chat_id)
    return {
        "chat_id": chat_id,
        "messages": [_message_to_response(msg) for msg in messages],
    }


@router.post("/chats/{chat_id}/messages:stream")
async def stream_message_route(
    chat_id: str,
    body: SendMessageRequest,
    user_id: CurrentUserId,
    chat_service: ChatServiceDep,
) -> StreamingResponse:
    """
    Answer one user message as Server-Sent Events.

    Every outcome, including admission and ownership failures, is reported
    in-stream as a terminal ``done`` or ``error`` event.
    """
    channel = await chat_service.send_message(
        user_id,
        chat_id,
        body.content,
        model=body.model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
    )
    request_id = request_id_ctx.get()
    headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    if request_id:
        headers["X-Request-ID"] = request_id
    ping_interval = chat_service.settings.sse_ping_interval_seconds
    return StreamingResponse(
        channel.iter_sse(ping_interval),
        media_type="text/event-stream",
        headers=headers,
    )


@router.post("/chat/complete")
async def complete_route(
    body: CompleteRequest,
    user_id: CurrentUserId,
    chat_service: ChatServiceDep,
) -> dict[str, Any]:
    """Blocking completion over caller-supplied messages. Nothing is stored."""
    messages = [ChatMessage(role=m.role, content=m.content) for m in body.messages]
    content = await chat_service.complete(
        user_id,
        messages,
        model=body.model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
    )
    return {
        "content": content,
        "provider": chat_service.provider.provider_name,
        "model": body.model or chat_service.settings.llm_model or chat_service.provider.default_model,
    }
