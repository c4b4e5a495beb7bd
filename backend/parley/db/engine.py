"""
Database engine configuration.

One process-wide engine is built lazily from ``DATABASE_URL``. SQLite gets
thread-sharing and enforced foreign keys; other backends get a sized pool
large enough for the run workers plus request handlers.
"""

from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

from parley.config import Settings, get_settings
from parley.core import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def _ensure_sqlite_dir(database_url: str) -> None:
    db_path = database_url.removeprefix("sqlite:///")
    if not db_path or db_path == ":memory:":
        return
    db_dir = Path(db_path).parent
    if not db_dir.exists():
        db_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Created database directory", data={"path": str(db_dir)})


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(settings: Settings) -> Engine:
    """Create an engine for the configured database."""
    if settings.is_sqlite:
        _ensure_sqlite_dir(settings.database_url)
        engine = create_engine(
            settings.database_url,
            # Sessions are used from pool workers and request threads.
            connect_args={"check_same_thread": False},
            echo=settings.debug,
            pool_pre_ping=True,
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=max(5, settings.llm_worker_pool_size),
        max_overflow=10,
    )


def get_engine() -> Engine:
    """Return the cached engine, building it on first use."""
    global _engine

    if _engine is None:
        _engine = build_engine(get_settings())
        logger.info(
            "Database engine created",
            data={"dialect": _engine.dialect.name},
        )
    return _engine


def verify_database_connection() -> bool:
    """Run ``SELECT 1``; False when the database is unreachable."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database connection failed", data={"error": str(e)})
        return False


def dispose_engine() -> None:
    """Dispose of the engine and release all connections."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("Database engine disposed")
