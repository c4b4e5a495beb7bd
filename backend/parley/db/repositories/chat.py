"""Repository helpers for chats and messages."""

from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from parley.db.models import Chat, Message


def create_chat(db: Session, user_id: str, title: str | None = None) -> Chat:
    """Create a new chat for the given user."""
    chat = Chat(
        user_id=user_id,
        title=title.strip() if title and title.strip() else "New Chat",
    )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def find_chat_owned_by(db: Session, user_id: str, chat_id: str) -> Chat | None:
    """Fetch a chat only if it belongs to the user."""
    stmt = select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
    return db.execute(stmt).scalar_one_or_none()


def list_user_chats(db: Session, user_id: str) -> list[Chat]:
    """List chats belonging to the user, most recently updated first."""
    stmt = (
        select(Chat)
        .where(Chat.user_id == user_id)
        .order_by(Chat.updated_at.desc())
    )
    return list(db.execute(stmt).scalars().all())


def update_chat_title(
    db: Session, user_id: str, chat_id: str, title: str
) -> Chat | None:
    """Rename an existing chat."""
    chat = find_chat_owned_by(db, user_id, chat_id)
    if not chat:
        return None
    chat.title = title.strip() if title.strip() else chat.title
    db.commit()
    db.refresh(chat)
    return chat


def delete_chat(db: Session, user_id: str, chat_id: str) -> bool:
    """Delete a chat and cascade its messages."""
    chat = find_chat_owned_by(db, user_id, chat_id)
    if not chat:
        return False
    db.delete(chat)
    db.commit()
    return True


def append_message(
    db: Session,
    chat_id: str,
    role: str,
    content: str,
    *,
    provider: str | None = None,
    model: str | None = None,
    token_in: int | None = None,
    token_out: int | None = None,
) -> Message:
    """Insert a chat message and touch the owning chat."""
    now = datetime.now(UTC)
    seq = db.execute(
        select(func.coalesce(func.max(Message.seq), 0)).where(Message.chat_id == chat_id)
    ).scalar_one()
    message = Message(
        chat_id=chat_id,
        role=role,
        content=content,
        seq=seq + 1,
        provider=provider,
        model=model,
        token_in=token_in,
        token_out=token_out,
        created_at=now,
    )
    db.add(message)
    chat = db.get(Chat, chat_id)
    if chat is not None:
        chat.updated_at = now
    db.commit()
    db.refresh(message)
    return message


def list_turns(db: Session, chat_id: str) -> list[Message]:
    """Get all messages for a chat in the order they were appended."""
    stmt = (
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.seq.asc(), Message.created_at.asc())
    )
    return list(db.execute(stmt).scalars().all())
