"""
Parley backend application.

FastAPI application with structured logging, error handling and the
bounded worker pool that runs streaming chat turns.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI

from parley import __version__
from parley.api import chat_router, health_router, usage_router
from parley.config import get_settings
from parley.core import get_logger, setup_logging
from parley.core.middleware import RequestContextMiddleware, setup_exception_handlers
from parley.db import dispose_engine, get_session_factory, verify_database_connection
from parley.providers import create_provider
from parley.services import (
    ChatService,
    PromptBuilder,
    RateLimiter,
    RunPool,
    UsageLedger,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting Parley backend",
        data={
            "host": settings.host,
            "port": settings.port,
            "provider": settings.llm_provider,
            "workers": settings.llm_worker_pool_size,
        },
    )

    if verify_database_connection():
        logger.info("Database connection verified")
    else:
        logger.warning("Database connection failed - run 'alembic upgrade head' to initialize")

    app.state.start_time = datetime.now(UTC)

    # Tests pre-populate provider / session factory on app.state.
    provider_created = False
    if getattr(app.state, "provider", None) is None:
        app.state.provider = create_provider(settings)
        provider_created = True
    if getattr(app.state, "session_factory", None) is None:
        app.state.session_factory = get_session_factory()

    pool = RunPool(settings.llm_worker_pool_size, settings.llm_worker_queue_capacity)
    await pool.start()
    app.state.run_pool = pool
    app.state.chat_service = ChatService(
        provider=app.state.provider,
        session_factory=app.state.session_factory,
        pool=pool,
        rate_limiter=RateLimiter.from_settings(settings),
        prompt_builder=PromptBuilder(settings.llm_system_prompt or None),
        usage_ledger=UsageLedger(app.state.session_factory),
        settings=settings,
    )

    yield

    logger.info("Shutting down Parley backend")
    await pool.stop()
    app.state.chat_service = None
    app.state.run_pool = None
    if provider_created:
        await app.state.provider.aclose()
        app.state.provider = None
    dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Parley",
        description="Streaming chat backend for OpenAI-compatible LLM providers",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    setup_exception_handlers(app)
    app.add_middleware(RequestContextMiddleware, user_header=settings.user_id_header)

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(usage_router)

    return app


app = create_app()
