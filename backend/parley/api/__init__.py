"""API routers."""

from parley.api.chat import router as chat_router
from parley.api.health import router as health_router
from parley.api.usage import router as usage_router

__all__ = [
    "chat_router",
    "health_router",
    "usage_router",
]
