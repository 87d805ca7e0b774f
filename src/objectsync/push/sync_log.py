"""Operations log for push outcomes.

Every SyncResult the engine produces is handed to a SyncLogger. The default
implementation writes structured structlog events; storing them elsewhere is
a matter of supplying another object with a ``record`` coroutine.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from src.objectsync.core.monitoring import push_results_total
from src.objectsync.push.schemas import SyncResult, SyncStatus

logger = structlog.get_logger(__name__)


class SyncLogger(Protocol):
    async def record(self, result: SyncResult) -> None: ...


class StructlogSyncLogger:
    """Writes SyncResults as structlog events and counts them in Prometheus.

    Level follows status: errors warn, notices inform, successes are debug
    unless debug mode asks for them to be visible.

    Args:
        debug_mode: Emit successes at info level with their full message.
    """

    def __init__(self, debug_mode: bool = False) -> None:
        self._debug_mode = debug_mode

    async def record(self, result: SyncResult) -> None:
        fields = {
            "title": result.title,
            "trigger": result.trigger.name,
            "parent_id": result.parent_id,
            "status": result.status.value,
            "kind": result.kind.value if result.kind else None,
        }
        push_results_total.labels(
            trigger=fields["trigger"], status=fields["status"], kind=fields["kind"] or "none"
        ).inc()

        if result.status == SyncStatus.ERROR:
            logger.warning("push.result", message=result.message, **fields)
        elif result.status == SyncStatus.NOTICE:
            logger.info("push.result", message=result.message, **fields)
        elif self._debug_mode:
            logger.info("push.result", message=result.message, **fields)
        else:
            logger.debug("push.result", **fields)
