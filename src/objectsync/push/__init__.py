"""Push synchronization engine: local change events to remote CRM writes.

Decides per change and per fieldmap whether a push is allowed, runs it inline
or through the task queue, performs create/upsert/update/delete against the
remote API, and keeps the mapping object that joins a local record to its
remote counterpart. Loop guards in the lock store keep pushes and pulls from
echoing each other.

Exports:
    SyncTrigger: Create/update/delete bitmask values.
    Fieldmap: Local ↔ remote object type mapping configuration.
    MappingObject: Join row between a local and a remote record.
    ConfirmedRef / PendingRef: Remote reference variants on a mapping object.
    SyncResult: Human-readable outcome of one push.
    PushOrchestrator: Entry point for local change events and manual pushes.
    RemoteSyncExecutor: Performs one push for one (record, fieldmap) pair.
    DispatchTable: Routes typed local events to the orchestrator.
    PushJobWorker: Drains queued push jobs into the executor.
"""

from __future__ import annotations

from src.objectsync.push.schemas import (
    ConfirmedRef,
    Fieldmap,
    MappingObject,
    PendingRef,
    SyncResult,
    SyncTrigger,
)

__all__ = [
    "ConfirmedRef",
    "DispatchTable",
    "Fieldmap",
    "MappingObject",
    "PendingRef",
    "PushJobWorker",
    "PushOrchestrator",
    "RemoteSyncExecutor",
    "SyncResult",
    "SyncTrigger",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the engine classes so schema imports stay light."""
    if name == "PushOrchestrator":
        from src.objectsync.push.orchestrator import PushOrchestrator

        return PushOrchestrator
    if name == "RemoteSyncExecutor":
        from src.objectsync.push.executor import RemoteSyncExecutor

        return RemoteSyncExecutor
    if name == "DispatchTable":
        from src.objectsync.push.dispatch import DispatchTable

        return DispatchTable
    if name == "PushJobWorker":
        from src.objectsync.push.worker import PushJobWorker

        return PushJobWorker
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
