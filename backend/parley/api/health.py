"""
Health check endpoints.

Provides liveness and readiness probes for monitoring.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from parley import __version__
from parley.core.metrics import metrics
from parley.db import verify_database_connection

router = APIRouter(tags=["health"])


@router.get("/health")
async def healthcheck(request: Request) -> dict[str, Any]:
    """Liveness probe with the active provider and a metrics snapshot."""
    provider = getattr(request.app.state, "provider", None)
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "provider": provider.provider_name if provider else None,
        "model": provider.default_model if provider else None,
        "metrics": metrics.snapshot(),
    }


@router.get("/readyz")
async def readiness(request: Request) -> JSONResponse:
    """Readiness probe: database reachable and run pool started."""
    pool = getattr(request.app.state, "run_pool", None)
    checks = {
        "database": verify_database_connection(),
        "run_pool": bool(pool and pool.running),
    }
    ready = all(checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
