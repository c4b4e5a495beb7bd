"""Session factory shared by request handlers and run workers."""

from collections.abc import Generator

from sqlalchemy.orm import Session, sessionmaker

from parley.db.engine import get_engine

_session_factory: sessionmaker[Session] | None = None


def get_session_factory() -> sessionmaker[Session]:
    """Return the process-wide factory bound to the current engine.

    Rows outlive their session in run workers (the assistant message id is
    read after commit), so attributes are not expired on commit.
    """
    global _session_factory

    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(), autoflush=False, expire_on_commit=False
        )
    return _session_factory


def reset_session_factory() -> None:
    """Forget the factory so the next call binds to a fresh engine."""
    global _session_factory
    _session_factory = None


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    with get_session_factory()() as session:
        yield session
