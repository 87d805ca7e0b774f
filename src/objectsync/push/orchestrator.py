"""CRUD orchestrator: the entry point for local change events.

For each change it drops pull echoes, then walks every fieldmap configured for
the object type: policy check, draft skip, then either enqueue a PushJob
(async fieldmaps) or run the executor inline. One fieldmap failing never
stops the others.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from src.objectsync.push.exceptions import ConfigurationError, LocalRecordNotFoundError
from src.objectsync.push.executor import REMOTE_LABEL, MappingStore, RemoteSyncExecutor
from src.objectsync.push.local import LocalStore, get_local_id, is_draft
from src.objectsync.push.loop_guard import LoopGuard
from src.objectsync.push.policy import PushPolicy, operation_name
from src.objectsync.push.queue import TaskQueue
from src.objectsync.push.schemas import (
    Fieldmap,
    ManualPushResult,
    PushJob,
    SyncErrorKind,
    SyncResult,
    SyncStatus,
    SyncTrigger,
)
from src.objectsync.push.sync_log import SyncLogger
from src.objectsync.remote.client import HTTP_CREATED, HTTP_NO_CONTENT

logger = structlog.get_logger(__name__)

METHOD_TRIGGERS = {
    "POST": SyncTrigger.CREATE,
    "PUT": SyncTrigger.UPDATE,
    "DELETE": SyncTrigger.DELETE,
}

HTTP_METHOD_NOT_ALLOWED = 405


class FieldmapLister(Protocol):
    async def get_fieldmaps(
        self, fieldmap_id: int | None = None, object_type: str | None = None
    ) -> list[Fieldmap]: ...


class PushOrchestrator:
    """Runs the per-fieldmap push loop for local change events.

    Args:
        fieldmaps: Fieldmap repository.
        mappings: Mapping object store.
        local: Local store.
        loop_guard: Loop guard, used to drop changes caused by pulls.
        policy: Push-allowed policy.
        executor: Remote sync executor for inline pushes.
        queue: Task queue for async fieldmaps.
        sync_logger: Destination for results produced here.
        queue_name: Queue that receives PushJobs.
        callback_id: Callback id the queue runner dispatches PushJobs to.
    """

    def __init__(
        self,
        fieldmaps: FieldmapLister,
        mappings: MappingStore,
        local: LocalStore,
        loop_guard: LoopGuard,
        policy: PushPolicy,
        executor: RemoteSyncExecutor,
        queue: TaskQueue,
        sync_logger: SyncLogger,
        queue_name: str = "salesforce_push",
        callback_id: str = "object_sync_for_salesforce_push_record",
    ) -> None:
        self._fieldmaps = fieldmaps
        self._mappings = mappings
        self._local = local
        self._guard = loop_guard
        self._policy = policy
        self._executor = executor
        self._queue = queue
        self._sync_logger = sync_logger
        self._queue_name = queue_name
        self._callback_id = callback_id

    async def push_object_crud(
        self,
        object_type: str,
        record: dict[str, Any],
        trigger: SyncTrigger,
        manual: bool = False,
    ) -> list[SyncResult]:
        """Push one local change through every fieldmap for its object type.

        Args:
            object_type: Local object type.
            record: Local record data (must carry its id field).
            trigger: Create, update or delete.
            manual: Interactive push; async fieldmaps run inline instead of
                being queued.

        Returns:
            Per-fieldmap results in fieldmap order. Empty when the change
            was a pull echo or nothing needed sending.
        """
        trigger = SyncTrigger(trigger)
        try:
            structure = self._local.get_table_structure(object_type)
        except ConfigurationError as exc:
            return [await self._configuration_error(object_type, trigger, exc.detail)]

        local_id = get_local_id(record, structure)
        if local_id is None:
            return [
                await self._configuration_error(
                    object_type, trigger, f"record has no {structure.id_field} field"
                )
            ]

        existing = await self._mappings.find_by_local(object_type, local_id)
        remote_id = existing[0].remote_id if existing else None
        if await self._guard.consume_pull_guard(remote_id):
            logger.info(
                "push.skipped_pull_echo",
                object_type=object_type,
                local_id=local_id,
                remote_id=remote_id,
            )
            return []

        is_new = not existing
        results: list[SyncResult] = []
        fieldmaps = await self._fieldmaps.get_fieldmaps(object_type=object_type)

        for fieldmap in fieldmaps:
            allowed = await self._policy.is_push_allowed(
                object_type, record, local_id, trigger, fieldmap
            )
            if not allowed:
                op = operation_name(trigger, is_new)
                result = SyncResult(
                    title=(
                        f"Error: {op or 'Push'} {REMOTE_LABEL} {fieldmap.remote_object_type} was not "
                        f"allowed for local {object_type} with {structure.id_field} of {local_id}"
                    ),
                    message=f"Fieldmap {fieldmap.id} ({fieldmap.label}) denied the push.",
                    trigger=trigger,
                    parent_id=local_id,
                    status=SyncStatus.ERROR,
                    kind=SyncErrorKind.POLICY_DENIED,
                )
                # Denials with no operation that could have run are returned but not logged.
                if op:
                    await self._sync_logger.record(result)
                results.append(result)
                continue

            if is_draft(record, structure) and not fieldmap.push_drafts:
                logger.debug(
                    "push.skipped_draft",
                    object_type=object_type,
                    local_id=local_id,
                    fieldmap_id=fieldmap.id,
                )
                continue

            if fieldmap.push_async and not manual:
                results.append(await self._enqueue(object_type, local_id, fieldmap, trigger))
                continue

            try:
                result = await self._executor.sync(object_type, record, fieldmap, trigger)
            except Exception as exc:
                logger.error(
                    "push.unexpected_error",
                    object_type=object_type,
                    local_id=local_id,
                    fieldmap_id=fieldmap.id,
                    error=str(exc),
                    exc_info=True,
                )
                result = SyncResult(
                    title=(
                        f"Error: {trigger.label} {REMOTE_LABEL} {fieldmap.remote_object_type} "
                        f"failed unexpectedly for local {object_type} with "
                        f"{structure.id_field} of {local_id}"
                    ),
                    message=str(exc),
                    trigger=trigger,
                    parent_id=local_id,
                    status=SyncStatus.ERROR,
                )
                await self._sync_logger.record(result)
            if result is not None:
                results.append(result)

        return results

    async def manual_push(
        self, object_type: str, local_id: int, http_method: str
    ) -> ManualPushResult:
        """Push one record interactively and summarise the outcome as a status code.

        ``POST`` creates, ``PUT`` updates, ``DELETE`` deletes. Every result
        succeeding gives 201 (204 for a delete); anything else gives 405.

        Raises:
            ConfigurationError: If the object type is unknown.
            LocalRecordNotFoundError: If a create/update target does not exist.
        """
        trigger = METHOD_TRIGGERS.get(http_method.upper())
        if trigger is None:
            return ManualPushResult(code=HTTP_METHOD_NOT_ALLOWED)

        structure = self._local.get_table_structure(object_type)
        is_deleted = trigger == SyncTrigger.DELETE
        record = await self._local.get_object_data(object_type, local_id, is_deleted=is_deleted)
        if record is None:
            if not is_deleted:
                raise LocalRecordNotFoundError(object_type, local_id)
            record = {structure.id_field: local_id}

        results = await self.push_object_crud(object_type, record, trigger, manual=True)
        succeeded = bool(results) and all(r.status == SyncStatus.SUCCESS for r in results)
        if not succeeded:
            code = HTTP_METHOD_NOT_ALLOWED
        elif is_deleted:
            code = HTTP_NO_CONTENT
        else:
            code = HTTP_CREATED

        logger.info(
            "push.manual_push",
            object_type=object_type,
            local_id=local_id,
            method=http_method.upper(),
            code=code,
            results=len(results),
        )
        return ManualPushResult(code=code, results=results)

    async def _enqueue(
        self,
        object_type: str,
        local_id: int,
        fieldmap: Fieldmap,
        trigger: SyncTrigger,
    ) -> SyncResult:
        job = PushJob(
            object_type=object_type,
            local_id=local_id,
            fieldmap_id=fieldmap.id,
            trigger=trigger,
        )
        message_id = await self._queue.enqueue(
            self._callback_id, job.model_dump(mode="json"), self._queue_name
        )
        logger.info(
            "push.queued",
            object_type=object_type,
            local_id=local_id,
            fieldmap_id=fieldmap.id,
            trigger=trigger.name,
            message_id=message_id,
        )
        result = SyncResult(
            title=(
                f"Success: Queued {trigger.label} of local {object_type} {local_id} "
                f"for {REMOTE_LABEL} {fieldmap.remote_object_type}"
            ),
            message=f"Queued on {self._queue_name}",
            trigger=trigger,
            parent_id=local_id,
            status=SyncStatus.SUCCESS,
        )
        await self._sync_logger.record(result)
        return result

    async def _configuration_error(
        self, object_type: str, trigger: SyncTrigger, detail: str
    ) -> SyncResult:
        result = SyncResult(
            title=f"Error: {REMOTE_LABEL} push of local {object_type} could not be processed",
            message=detail,
            trigger=trigger,
            status=SyncStatus.ERROR,
            kind=SyncErrorKind.CONFIGURATION,
        )
        await self._sync_logger.record(result)
        return result
