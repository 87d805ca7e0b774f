"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, Sentry, lifespan
events for database and push engine initialization, and the v1 API router.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.objectsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.objectsync.api.v1.router import router as v1_router
from src.objectsync.config import get_settings
from src.objectsync.core.database import close_db, get_session, init_db
from src.objectsync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.objectsync.core.redis import close_redis, get_redis_pool
from src.objectsync.push.engine import build_push_engine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and the push engine; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Push Engine ──────────────────────────────────────────────────────
    # Failure-tolerant: without it the push endpoints answer 503 and
    # readiness still reports database/Redis state.
    app.state.push_worker_task = None
    try:
        engine = await build_push_engine(
            settings,
            redis_client=get_redis_pool(),
            session_factory=get_session,
        )
        app.state.push_engine = engine
        app.state.remote_client = engine.remote
        app.state.extensions = engine.extensions
        app.state.push_orchestrator = engine.orchestrator
        app.state.dispatch_table = engine.dispatch_table

        if settings.PUSH_WORKER_ENABLED:
            app.state.push_worker_task = asyncio.create_task(engine.worker.process_loop())
            log.info("push_worker.started", queue=settings.PUSH_QUEUE_NAME)
    except Exception:
        log.warning("push_engine.init_failed", exc_info=True)
        app.state.push_engine = None
        app.state.push_orchestrator = None
        app.state.dispatch_table = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    worker_task = getattr(app.state, "push_worker_task", None)
    if worker_task and not worker_task.done():
        app.state.push_engine.worker.stop()
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
        log.info("push_worker.stopped")

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Object Sync API",
        version="0.1.0",
        description="Push synchronization from local records to Salesforce",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
