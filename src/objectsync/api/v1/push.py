"""REST API endpoints for pushing local records to the remote CRM.

Provides the manual push endpoint (POST creates, PUT updates, DELETE deletes)
and an event intake endpoint that runs local lifecycle events through the
dispatch table. Both read their engine objects from app.state.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.objectsync.push.exceptions import ConfigurationError
from src.objectsync.push.schemas import LocalEvent, SyncResult

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/push", tags=["push"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class SyncResultResponse(BaseModel):
    """One push outcome, serializes the timestamp to an ISO string."""

    title: str
    message: str = ""
    trigger: str
    parent_id: int = 0
    status: str
    kind: str | None = None
    timestamp: str


class PushResponse(BaseModel):
    """Coarse status code plus the per-fieldmap results behind it."""

    code: int
    results: list[SyncResultResponse] = Field(default_factory=list)


def _result_to_response(result: SyncResult) -> SyncResultResponse:
    return SyncResultResponse(
        title=result.title,
        message=result.message,
        trigger=result.trigger.label,
        parent_id=result.parent_id,
        status=result.status.value,
        kind=result.kind.value if result.kind else None,
        timestamp=result.timestamp.isoformat(),
    )


# ── Helpers ──────────────────────────────────────────────────────────────────


def _get_state(request: Request, name: str) -> Any:
    """Retrieve an engine object from app.state, 503 if not available."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push engine not initialized",
        )
    return value


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.api_route(
    "/{object_type}/{local_id}",
    methods=["POST", "PUT", "DELETE"],
    response_model=PushResponse,
)
async def manual_push(object_type: str, local_id: int, request: Request):
    """Push one local record now, bypassing the queue.

    The response status is the push's coarse code: 201 when every fieldmap
    succeeded (204 for a delete), 405 otherwise.
    """
    orchestrator = _get_state(request, "push_orchestrator")
    try:
        outcome = await orchestrator.manual_push(object_type, local_id, request.method)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    if outcome.code == status.HTTP_204_NO_CONTENT:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    body = PushResponse(
        code=outcome.code,
        results=[_result_to_response(r) for r in outcome.results],
    )
    return JSONResponse(status_code=outcome.code, content=body.model_dump())


@router.post("/events", response_model=list[SyncResultResponse])
async def receive_event(event: LocalEvent, request: Request) -> list[SyncResultResponse]:
    """Run one local lifecycle event through the dispatch table."""
    dispatch_table = _get_state(request, "dispatch_table")
    try:
        results = await dispatch_table.dispatch(event)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.debug(
        "push.event_dispatched",
        object_type=event.object_type,
        local_id=event.local_id,
        kind=event.kind.value,
        results=len(results),
    )
    return [_result_to_response(r) for r in results]
