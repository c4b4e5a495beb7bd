"""Shared pytest fixtures: isolated settings and a throwaway SQLite database."""

import gc
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from parley.config import get_settings
from parley.db import Base, dispose_engine, reset_session_factory
from parley.db.repositories import create_chat, ensure_user

_ENV_KEYS = (
    "LLM_PROVIDER",
    "LLM_API_KEY",
    "LLM_BASE_URL",
    "LLM_MODEL",
    "LLM_SYSTEM_PROMPT",
    "ENVIRONMENT",
    "RATE_LIMIT_ENABLED",
    "RATE_LIMIT_MAX_REQUESTS",
    "STREAM_TIMEOUT_SECONDS",
)


@pytest.fixture(scope="session")
def project_root():
    return Path(__file__).resolve().parent.parent.parent


@pytest.fixture
def tmp_db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_db_path):
    """Point the app at a temp database and drop cached settings/engine."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_db_path}")
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    get_settings.cache_clear()
    dispose_engine()
    reset_session_factory()
    yield
    get_settings.cache_clear()
    dispose_engine()
    reset_session_factory()


@pytest.fixture
def engine(tmp_db_path):
    engine = create_engine(
        f"sqlite:///{tmp_db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()
    gc.collect()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user_id(db_session):
    return ensure_user(db_session, "user-1").id


@pytest.fixture
def chat_id(db_session, user_id):
    return create_chat(db_session, user_id, title="Test chat").id
