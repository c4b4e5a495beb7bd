"""Database repositories for data access."""

from parley.db.repositories.chat import (
    append_message,
    create_chat,
    delete_chat,
    find_chat_owned_by,
    list_turns,
    list_user_chats,
    update_chat_title,
)
from parley.db.repositories.usage import (
    append_usage_log,
    list_usage_logs,
    sum_user_tokens,
)
from parley.db.repositories.user import ensure_user, get_user_by_id

__all__ = [
    # User
    "ensure_user",
    "get_user_by_id",
    # Chats
    "create_chat",
    "find_chat_owned_by",
    "list_user_chats",
    "update_chat_title",
    "delete_chat",
    "append_message",
    "list_turns",
    # Usage
    "append_usage_log",
    "list_usage_logs",
    "sum_user_tokens",
]
