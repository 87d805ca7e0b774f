"""Remote sync executor: performs one push for one (record, fieldmap) pair.

Three branches, chosen by trigger and mapping state:

- Delete: removes the remote record unless other local records still map to
  it (fan-in), then always removes this record's mapping object -- the local
  record is gone whatever the remote outcome.
- Create/upsert (no mapping object yet, or a missing-required-data retry):
  writes a pending placeholder mapping object *before* calling the remote
  API so a concurrent event for the same record takes the update branch
  instead of racing a second create. Prematch/key rules or an explicit match
  turn the create into an upsert by external key.
- Update: skips stale writes (the mapping was synced after the record last
  changed), otherwise updates the remote record and records the outcome on
  the mapping object even when the call fails.

Every remote call is wrapped individually: a RemoteAPIError becomes exactly
one error SyncResult plus a PUSH_FAIL notification, and nothing propagates
to the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from src.objectsync.push.exceptions import (
    ConfigurationError,
    FieldmapNotFoundError,
    LocalRecordNotFoundError,
)
from src.objectsync.push.extensions import ExtensionPoint, ExtensionRegistry
from src.objectsync.push.fieldmaps import encode_match_value, map_params
from src.objectsync.push.local import LocalStore, get_local_id, get_modified_at, parse_timestamp
from src.objectsync.push.loop_guard import LockStore, LoopGuard
from src.objectsync.push.queue import TaskQueue
from src.objectsync.push.schemas import (
    ConfirmedRef,
    Fieldmap,
    MappingAction,
    MappingObject,
    MappingSyncStatus,
    PendingRef,
    PushParams,
    RemoteRef,
    SyncDirection,
    SyncedObject,
    SyncErrorKind,
    SyncResult,
    SyncStatus,
    SyncTrigger,
    TableStructure,
)
from src.objectsync.push.sync_log import SyncLogger
from src.objectsync.remote.client import (
    HTTP_MULTIPLE_CHOICES,
    HTTP_NO_CONTENT,
    RemoteClient,
    RemoteResponse,
)
from src.objectsync.remote.exceptions import RemoteAPIError

logger = structlog.get_logger(__name__)

REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
CAMPAIGN_MEMBER = "CampaignMember"
REMOTE_LABEL = "Salesforce"


class MappingStore(Protocol):
    async def create(
        self,
        local_id: int,
        local_object_type: str,
        remote_ref: RemoteRef,
        fieldmap: Fieldmap | None = None,
        pending: bool = False,
    ) -> MappingObject: ...

    async def update(self, mapping_object: MappingObject) -> bool: ...

    async def delete(self, mapping_object_id: int) -> bool: ...

    async def find_by_local(self, local_object_type: str, local_id: int) -> list[MappingObject]: ...

    async def find_by_remote(self, remote_id: str) -> list[MappingObject]: ...


class FieldmapSource(Protocol):
    async def get_fieldmap(self, fieldmap_id: int) -> Fieldmap | None: ...


@dataclass(frozen=True)
class _Push:
    """Facts about the push in progress, shared by every branch."""

    object_type: str
    record: dict[str, Any]
    local_id: int
    fieldmap: Fieldmap
    trigger: SyncTrigger
    structure: TableStructure

    @property
    def remote_type(self) -> str:
        return self.fieldmap.remote_object_type

    @property
    def local_label(self) -> str:
        return (
            f"local {self.object_type} with {self.structure.id_field} of {self.local_id}"
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def missing_data_key(local_id: int) -> str:
    return f"missing_required_data_id_{local_id}"


class RemoteSyncExecutor:
    """Executes the remote side of a push and keeps the mapping object current.

    Args:
        remote: Remote API client.
        mappings: Mapping object store.
        fieldmaps: Fieldmap source (used when a queued job passes an id).
        local: Local store (table structure, record loading).
        loop_guard: Loop-guard interface over the lock store.
        lock_store: Raw lock store, used for the missing-required-data flag.
        queue: Task queue, consulted for its frequency to size lock TTLs.
        sync_logger: Destination for every SyncResult.
        extensions: Extension registry.
        grace_seconds: Added to the queue frequency to form the lock TTL.
        default_frequency: Frequency used when the queue reports none.
    """

    def __init__(
        self,
        remote: RemoteClient,
        mappings: MappingStore,
        fieldmaps: FieldmapSource,
        local: LocalStore,
        loop_guard: LoopGuard,
        lock_store: LockStore,
        queue: TaskQueue,
        sync_logger: SyncLogger,
        extensions: ExtensionRegistry,
        grace_seconds: int = 60,
        default_frequency: int = 60,
    ) -> None:
        self._remote = remote
        self._mappings = mappings
        self._fieldmaps = fieldmaps
        self._local = local
        self._guard = loop_guard
        self._lock_store = lock_store
        self._queue = queue
        self._sync_logger = sync_logger
        self._extensions = extensions
        self._grace_seconds = grace_seconds
        self._default_frequency = default_frequency

    async def lock_ttl(self) -> int:
        """Loop-guard TTL: one queue cycle plus the grace period."""
        frequencies = await self._queue.get_frequencies()
        base = frequencies[0].frequency if frequencies else self._default_frequency
        return base + self._grace_seconds

    # ── Entry Point ─────────────────────────────────────────────────────────

    async def sync(
        self,
        object_type: str,
        record: dict[str, Any] | int,
        fieldmap: Fieldmap | int,
        trigger: SyncTrigger,
        queue_item: bool = False,
    ) -> SyncResult | None:
        """Push one record through one fieldmap.

        The queued path passes ids for the record and fieldmap; the inline
        path passes materialized values.

        Args:
            object_type: Local object type.
            record: Local record data, or its local id.
            fieldmap: Fieldmap, or its id.
            trigger: Trigger being pushed.
            queue_item: Whether this call comes from the task queue.

        Returns:
            The SyncResult for this push, or None when there was nothing to
            do (no mapping to delete, or an empty translated field set).
        """
        trigger = SyncTrigger(trigger)
        try:
            structure = self._local.get_table_structure(object_type)
            data = await self._resolve_record(object_type, record, trigger, structure)
            fieldmap = await self._resolve_fieldmap(object_type, fieldmap)
        except ConfigurationError as exc:
            return await self._configuration_error(object_type, record, trigger, exc)
        record = data

        if not self._remote.is_authorized():
            logger.warning("push.not_authorized", object_type=object_type, fieldmap_id=fieldmap.id)
            result = SyncResult(
                title=(
                    f"Error: {REMOTE_LABEL} is not authorized; {trigger.label} of local "
                    f"{object_type} was not pushed to {fieldmap.remote_object_type}"
                ),
                trigger=trigger,
                parent_id=get_local_id(record, structure) or 0,
                status=SyncStatus.ERROR,
                kind=SyncErrorKind.NOT_AUTHORIZED,
            )
            await self._sync_logger.record(result)
            return result

        local_id = get_local_id(record, structure)
        if local_id is None:
            return await self._configuration_error(
                object_type,
                record,
                trigger,
                ConfigurationError(object_type, f"record has no {structure.id_field}"),
            )

        push = _Push(
            object_type=object_type,
            record=record,
            local_id=local_id,
            fieldmap=fieldmap,
            trigger=trigger,
            structure=structure,
        )

        existing = await self._mappings.find_by_local(object_type, local_id)
        mapping_object: MappingObject | None = existing[0] if existing else None
        mapping_object = await self._extensions.apply(
            ExtensionPoint.PUSH_MAPPING_OBJECT, mapping_object, record, fieldmap
        )
        synced = SyncedObject(
            record=record,
            mapping_object=mapping_object,
            fieldmap=fieldmap,
            queue_item=queue_item,
        )

        if trigger == SyncTrigger.DELETE:
            if mapping_object is None:
                logger.debug("push.delete_without_mapping", object_type=object_type, local_id=local_id)
                return None
            return await self._delete(push, mapping_object, synced)

        missing_data = await self._lock_store.get(missing_data_key(local_id)) is not None
        is_new = mapping_object is None or missing_data

        params = map_params(fieldmap, record, trigger, is_new)
        params = await self._extensions.apply(
            ExtensionPoint.PUSH_PARAMS_MODIFY, params, fieldmap, record, trigger, is_new
        )
        if params is None or params.is_empty():
            logger.debug(
                "push.no_fields_to_send",
                object_type=object_type,
                local_id=local_id,
                fieldmap_id=fieldmap.id,
            )
            return None

        ttl = await self.lock_ttl()
        if is_new:
            return await self._create(push, mapping_object, params, missing_data, ttl, synced)
        return await self._update(push, mapping_object, params, ttl, synced)

    # ── Delete Branch ───────────────────────────────────────────────────────

    async def _delete(
        self,
        push: _Push,
        mapping_object: MappingObject,
        synced: SyncedObject,
    ) -> SyncResult:
        op = "Delete"
        ref = mapping_object.remote_ref

        if isinstance(ref, PendingRef):
            await self._mappings.delete(mapping_object.id)
            result = self._result(
                push,
                SyncStatus.NOTICE,
                (
                    f"Notice: {op} of {push.local_label} removed its pending mapping; "
                    f"no {REMOTE_LABEL} {push.remote_type} had been confirmed"
                ),
                kind=SyncErrorKind.PENDING_MAPPING,
            )
            await self._sync_logger.record(result)
            return result

        remote_id = ref.remote_id
        siblings = await self._mappings.find_by_remote(remote_id)
        others = [m for m in siblings if m.id != mapping_object.id]

        if not others:
            ttl = await self.lock_ttl()
            await self._guard.acquire_loop_guard(SyncDirection.PUSH, remote_id, ttl)
            try:
                response = await self._remote.delete(push.remote_type, remote_id)
            except RemoteAPIError as exc:
                result = self._result(
                    push,
                    SyncStatus.ERROR,
                    f"Error: {op} {REMOTE_LABEL} {push.remote_type} {remote_id} ({push.local_label})",
                    message=self._error_message(push, exc),
                    kind=SyncErrorKind.REMOTE_CALL,
                )
                await self._sync_logger.record(result)
                await self._extensions.fire(ExtensionPoint.PUSH_FAIL, op, exc.response, synced)
            else:
                result = self._result(
                    push,
                    SyncStatus.SUCCESS,
                    f"Success: {op} {REMOTE_LABEL} {push.remote_type} {remote_id} ({push.local_label})",
                )
                await self._sync_logger.record(result)
                await self._extensions.fire(
                    ExtensionPoint.PUSH_SUCCESS, op, response, synced, remote_id
                )
                if response.code == HTTP_NO_CONTENT:
                    await self._guard.acquire_loop_guard(SyncDirection.PUSH, remote_id, None)
        else:
            other_ids = ", ".join(str(m.local_id) for m in others)
            result = self._result(
                push,
                SyncStatus.NOTICE,
                (
                    f"Notice: {op} on {REMOTE_LABEL} {push.remote_type} with Id of {remote_id} "
                    f"was stopped because other local {push.object_type} records are mapped to it"
                ),
                message=(
                    f"The {REMOTE_LABEL} record was not deleted because these local ids also "
                    f"map to it: {other_ids}. The map row for {push.local_label} has been "
                    f"deleted; {REMOTE_LABEL} remains untouched."
                ),
                kind=SyncErrorKind.FAN_IN_DELETE_CONFLICT,
            )
            await self._sync_logger.record(result)

        await self._mappings.delete(mapping_object.id)
        return result

    # ── Create / Upsert Branch ──────────────────────────────────────────────

    async def _create(
        self,
        push: _Push,
        mapping_object: MappingObject | None,
        params: PushParams,
        missing_data: bool,
        ttl: int,
        synced: SyncedObject,
    ) -> SyncResult:
        if missing_data:
            await self._lock_store.delete(missing_data_key(push.local_id))

        pending = PendingRef.generate()
        if mapping_object is not None:
            mapping_object = mapping_object.model_copy(
                update={"remote_ref": pending, "action": MappingAction.PENDING}
            )
            await self._mappings.update(mapping_object)
        else:
            mapping_object = await self._mappings.create(
                push.local_id, push.object_type, pending, push.fieldmap, pending=True
            )
        await self._guard.acquire_loop_guard(SyncDirection.PUSH, pending.token, ttl)
        synced = synced.model_copy(update={"mapping_object": mapping_object})

        fields = dict(params.fields)
        record_type = push.fieldmap.record_type_default
        if record_type and not fields.get("RecordTypeId") and push.remote_type != CAMPAIGN_MEMBER:
            fields["RecordTypeId"] = record_type

        op = "Create"
        explicit_id: str | None = None
        remote_data: dict[str, Any] | None = None
        try:
            explicit_id = await self._extensions.apply(
                ExtensionPoint.FIND_REMOTE_MATCH, None, push.record, push.fieldmap, SyncDirection.PUSH
            )
            await self._extensions.fire(
                ExtensionPoint.PRE_PUSH,
                explicit_id,
                push.fieldmap,
                push.record,
                push.structure.id_field,
                fields,
            )
            fields = await self._extensions.apply(
                ExtensionPoint.PUSH_UPDATE_PARAMS_MODIFY,
                fields,
                explicit_id,
                push.fieldmap,
                push.record,
            )

            target = upsert_target(params, explicit_id)
            if target is not None:
                op = "Upsert"
                key_field, key_value = target
                response = await self._remote.upsert(push.remote_type, key_field, key_value, fields)
                if response.code == HTTP_MULTIPLE_CHOICES:
                    return await self._ambiguous_match(push, op, response, key_field, key_value, synced)
                if response.code == HTTP_NO_CONTENT:
                    remote_data = await self._refetch_by_key(push, key_field, key_value)
            else:
                response = await self._remote.create(push.remote_type, fields)

            new_id = (remote_data or {}).get("Id") or response.data.get("id")
            if not new_id:
                raise RemoteAPIError(
                    op.lower(), response.code, "response carried no record id", response=response.data
                )
        except RemoteAPIError as exc:
            if exc.error_code == REQUIRED_FIELD_MISSING:
                await self._lock_store.set(missing_data_key(push.local_id), 1)
            match_label = f" {explicit_id}" if explicit_id else ""
            result = self._result(
                push,
                SyncStatus.ERROR,
                f"Error: {op} {REMOTE_LABEL} {push.remote_type}{match_label} ({push.local_label})",
                message=self._error_message(push, exc),
                kind=SyncErrorKind.REMOTE_CALL,
            )
            await self._sync_logger.record(result)
            await self._extensions.fire(ExtensionPoint.PUSH_FAIL, op, exc.response, synced)
            return result

        remote_id = str(new_id)
        if remote_data is None:
            remote_data = await self._refetch(push, remote_id)
        mapping_object = mapping_object.model_copy(
            update={
                "remote_ref": ConfirmedRef(remote_id=remote_id),
                "action": MappingAction.CREATED,
                "last_sync": _now(),
                "last_sync_action": SyncDirection.PUSH,
                "last_sync_status": MappingSyncStatus.SUCCESS,
                "last_sync_message": f"Mapping object confirmed after {op.lower()}",
            }
        )
        await self._mappings.update(mapping_object)
        await self._guard.release_loop_guard(SyncDirection.PUSH, pending.token)
        await self._mark_pushed(remote_id, remote_data)

        result = self._result(
            push,
            SyncStatus.SUCCESS,
            f"Success: {op} {REMOTE_LABEL} {push.remote_type} {remote_id} ({push.local_label})",
        )
        await self._sync_logger.record(result)
        synced = synced.model_copy(update={"mapping_object": mapping_object})
        await self._extensions.fire(ExtensionPoint.PUSH_SUCCESS, op, response, synced, remote_id)
        return result

    async def _ambiguous_match(
        self,
        push: _Push,
        op: str,
        response: RemoteResponse,
        key_field: str,
        key_value: str,
        synced: SyncedObject,
    ) -> SyncResult:
        result = self._result(
            push,
            SyncStatus.ERROR,
            (
                f"Error: {op} {REMOTE_LABEL} {push.remote_type} matched more than one record "
                f"({push.local_label})"
            ),
            message=f"{response.error or 'MULTIPLE_CHOICES'} ({key_field}:{key_value})",
            kind=SyncErrorKind.AMBIGUOUS_MATCH,
        )
        await self._sync_logger.record(result)
        await self._extensions.fire(ExtensionPoint.PUSH_FAIL, op, response, synced)
        return result

    # ── Update Branch ───────────────────────────────────────────────────────

    async def _update(
        self,
        push: _Push,
        mapping_object: MappingObject,
        params: PushParams,
        ttl: int,
        synced: SyncedObject,
    ) -> SyncResult:
        op = "Update"
        ref = mapping_object.remote_ref

        if isinstance(ref, PendingRef):
            result = self._result(
                push,
                SyncStatus.NOTICE,
                (
                    f"Notice: {op}: did not sync {push.local_label} because its "
                    f"{REMOTE_LABEL} {push.remote_type} create is still pending"
                ),
                kind=SyncErrorKind.PENDING_MAPPING,
            )
            await self._sync_logger.record(result)
            return result

        remote_id = ref.remote_id
        await self._guard.acquire_loop_guard(SyncDirection.PUSH, remote_id, ttl)

        modified_at = get_modified_at(push.record, push.structure)
        if (
            modified_at is not None
            and mapping_object.last_sync is not None
            and _as_utc(mapping_object.last_sync) >= modified_at
        ):
            result = self._result(
                push,
                SyncStatus.NOTICE,
                (
                    f"Notice: {op}: did not sync {push.local_label} with {REMOTE_LABEL} Id "
                    f"{remote_id} because the last sync is not older than the object's last update"
                ),
                message=(
                    f"Last sync time: {mapping_object.last_sync.isoformat()}. "
                    f"Object updated time: {modified_at.isoformat()}."
                ),
                kind=SyncErrorKind.STALE_WRITE,
            )
            await self._sync_logger.record(result)
            return result

        fields = dict(params.fields)
        status = MappingSyncStatus.SUCCESS
        sync_message = "Mapping object updated after update"
        try:
            await self._extensions.fire(
                ExtensionPoint.PRE_PUSH,
                remote_id,
                push.fieldmap,
                push.record,
                push.structure.id_field,
                fields,
            )
            fields = await self._extensions.apply(
                ExtensionPoint.PUSH_UPDATE_PARAMS_MODIFY,
                fields,
                remote_id,
                push.fieldmap,
                push.record,
            )
            response = await self._remote.update(push.remote_type, remote_id, fields)
        except RemoteAPIError as exc:
            status = MappingSyncStatus.ERROR
            sync_message = exc.message
            result = self._result(
                push,
                SyncStatus.ERROR,
                f"Error: {op} {REMOTE_LABEL} {push.remote_type} {remote_id} ({push.local_label})",
                message=self._error_message(push, exc),
                kind=SyncErrorKind.REMOTE_CALL,
            )
            await self._sync_logger.record(result)
            await self._extensions.fire(ExtensionPoint.PUSH_FAIL, op, exc.response, synced)
        else:
            result = self._result(
                push,
                SyncStatus.SUCCESS,
                f"Success: {op} {REMOTE_LABEL} {push.remote_type} {remote_id} ({push.local_label})",
            )
            await self._sync_logger.record(result)
            await self._extensions.fire(ExtensionPoint.PUSH_SUCCESS, op, response, synced, remote_id)

        try:
            fetched = await self._remote.read(push.remote_type, remote_id, {"cache": False})
        except RemoteAPIError as exc:
            logger.warning(
                "push.refetch_failed",
                remote_type=push.remote_type,
                remote_id=remote_id,
                error=str(exc),
            )
        else:
            await self._mark_pushed(remote_id, fetched.data)

        mapping_object = mapping_object.model_copy(
            update={
                "last_sync": _now(),
                "last_sync_action": SyncDirection.PUSH,
                "last_sync_status": status,
                "last_sync_message": sync_message,
            }
        )
        await self._mappings.update(mapping_object)
        return result

    # ── Helpers ─────────────────────────────────────────────────────────────

    async def _refetch(self, push: _Push, remote_id: str) -> dict[str, Any]:
        """Read a just-written record back; falls back to its bare id."""
        try:
            fetched = await self._remote.read(push.remote_type, remote_id, {"cache": False})
        except RemoteAPIError as exc:
            logger.warning(
                "push.refetch_failed",
                remote_type=push.remote_type,
                remote_id=remote_id,
                error=str(exc),
            )
            return {"Id": remote_id}
        return fetched.data or {"Id": remote_id}

    async def _refetch_by_key(
        self, push: _Push, key_field: str, key_value: str
    ) -> dict[str, Any] | None:
        # A 204 upsert carries no body, so the id is only known after this read.
        try:
            fetched = await self._remote.read_by_external_id(
                push.remote_type, key_field, key_value, {"cache": False}
            )
        except RemoteAPIError as exc:
            logger.warning(
                "push.refetch_failed",
                remote_type=push.remote_type,
                key_field=key_field,
                key_value=key_value,
                error=str(exc),
            )
            return None
        return fetched.data or None

    async def _mark_pushed(self, remote_id: str, remote_data: dict[str, Any]) -> None:
        """Point the push guard at the remote last-modified time, if known."""
        last_modified = parse_timestamp(remote_data.get("LastModifiedDate"))
        if last_modified is not None:
            await self._guard.acquire_loop_guard(
                SyncDirection.PUSH, remote_id, None, value=int(last_modified.timestamp())
            )

    async def _resolve_record(
        self,
        object_type: str,
        record: dict[str, Any] | int,
        trigger: SyncTrigger,
        structure: TableStructure,
    ) -> dict[str, Any]:
        if not isinstance(record, int):
            return record
        is_deleted = trigger == SyncTrigger.DELETE
        data = await self._local.get_object_data(object_type, record, is_deleted=is_deleted)
        if data is None:
            if is_deleted:
                return {structure.id_field: record}
            raise LocalRecordNotFoundError(object_type, record)
        return data

    async def _resolve_fieldmap(self, object_type: str, fieldmap: Fieldmap | int) -> Fieldmap:
        if isinstance(fieldmap, Fieldmap):
            return fieldmap
        resolved = await self._fieldmaps.get_fieldmap(fieldmap)
        if resolved is None:
            raise FieldmapNotFoundError(fieldmap, object_type)
        return resolved

    async def _configuration_error(
        self,
        object_type: str,
        record: dict[str, Any] | int,
        trigger: SyncTrigger,
        exc: ConfigurationError,
    ) -> SyncResult:
        parent_id = record if isinstance(record, int) else 0
        result = SyncResult(
            title=f"Error: {REMOTE_LABEL} push of local {object_type} could not be processed",
            message=exc.detail,
            trigger=trigger,
            parent_id=parent_id,
            status=SyncStatus.ERROR,
            kind=SyncErrorKind.CONFIGURATION,
        )
        await self._sync_logger.record(result)
        return result

    @staticmethod
    def _result(
        push: _Push,
        status: SyncStatus,
        title: str,
        message: str = "",
        kind: SyncErrorKind | None = None,
    ) -> SyncResult:
        return SyncResult(
            title=title,
            message=message,
            trigger=push.trigger,
            parent_id=push.local_id,
            status=status,
            kind=kind,
        )

    @staticmethod
    def _error_message(push: _Push, exc: RemoteAPIError) -> str:
        message = f"Object: {push.remote_type}. Message: {exc.message}"
        if exc.error_code:
            message += f" ({exc.error_code})"
        if exc.response:
            message += f". Response: {json.dumps(exc.response, default=str)}"
        return message


def upsert_target(params: PushParams, explicit_id: str | None) -> tuple[str, str] | None:
    """Key field and encoded value for an upsert, or None for a plain create.

    An explicit match from FIND_REMOTE_MATCH wins, then the prematch rule,
    then the key rule.
    """
    if explicit_id:
        return "Id", str(explicit_id)
    if params.prematch is not None:
        return params.prematch.remote_field, encode_match_value(params.prematch.value)
    if params.key is not None:
        return params.key.remote_field, encode_match_value(params.key.value)
    return None
