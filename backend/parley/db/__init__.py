"""Database models, engine, and session management."""

from parley.db.base import Base, TimestampMixin
from parley.db.engine import dispose_engine, get_engine, verify_database_connection
from parley.db.models import Chat, Message, UsageLog, User
from parley.db.session import get_db, get_session_factory, reset_session_factory

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Engine
    "get_engine",
    "verify_database_connection",
    "dispose_engine",
    # Session
    "get_db",
    "get_session_factory",
    "reset_session_factory",
    # Models
    "Chat",
    "Message",
    "UsageLog",
    "User",
]
