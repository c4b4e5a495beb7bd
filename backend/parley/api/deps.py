"""Shared FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from parley.core import UnauthorizedError
from parley.services import ChatService


def get_current_user_id(request: Request) -> str:
    """Identity asserted by the upstream auth gateway."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise UnauthorizedError()
    return user_id


def get_chat_service(request: Request) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise RuntimeError("Chat service is not initialized")
    return service


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
