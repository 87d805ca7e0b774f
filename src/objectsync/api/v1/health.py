"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.objectsync.config import get_settings
from src.objectsync.core.database import get_engine
from src.objectsync.core.redis import get_redis_pool

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database, Redis and remote API configuration. Returns check results dict."""
    checks: dict = {"database": "ok", "redis": "ok", "remote": "ok"}

    # Check database
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    # Check Redis
    try:
        redis = get_redis_pool()
        pong = await redis.ping()
        if not pong:
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    # Remote credentials are informational: pushes report not_authorized without them
    remote = getattr(request.app.state, "remote_client", None)
    if remote is None or not remote.is_authorized():
        checks["remote"] = "not_authorized"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies DB and Redis connectivity.

    Returns 200 if both pass, 503 if either fails.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") == "ok" and checks.get("redis") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
