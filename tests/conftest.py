"""Shared test doubles and fixtures for the push engine.

Provides in-memory implementations of every collaborator the engine talks to,
so no test needs PostgreSQL, Redis or network access:
- InMemoryMappingObjectStore: MappingObjectRepository double
- InMemoryFieldmapRepository: FieldmapRepository double
- InMemoryLockStore: NamespacedRedis double (records TTLs)
- FakeRemoteClient: RemoteClient double recording every call
- FakeLocalStore: LocalStore double over a dict of records
- FakeTaskQueue / RecordingSyncLogger
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from src.objectsync.push.executor import RemoteSyncExecutor
from src.objectsync.push.extensions import ExtensionRegistry
from src.objectsync.push.local import LocalStore, TableStructureRegistry
from src.objectsync.push.loop_guard import LoopGuard
from src.objectsync.push.orchestrator import PushOrchestrator
from src.objectsync.push.policy import PushPolicy
from src.objectsync.push.queue import QueueSchedule
from src.objectsync.push.schemas import (
    ConfirmedRef,
    FieldRule,
    Fieldmap,
    MappingAction,
    MappingObject,
    MappingSyncStatus,
    PendingRef,
    RemoteRef,
    SyncDirection,
    SyncResult,
    SyncTrigger,
    TableStructure,
)
from src.objectsync.remote.client import RemoteClient, RemoteResponse
from src.objectsync.remote.exceptions import RemoteAPIError

REMOTE_LAST_MODIFIED = "2026-03-01T12:00:00.000+0000"
ALL_TRIGGERS = {SyncTrigger.CREATE, SyncTrigger.UPDATE, SyncTrigger.DELETE}


def make_fieldmap(**overrides: Any) -> Fieldmap:
    """Build the post → Article__c fieldmap used across the suite."""
    values: dict[str, Any] = {
        "id": 1,
        "label": "Posts to articles",
        "local_object_type": "post",
        "remote_object_type": "Article__c",
        "sync_triggers": set(ALL_TRIGGERS),
        "push_async": False,
        "fields": [FieldRule(local_field="title", remote_field="Name")],
    }
    values.update(overrides)
    return Fieldmap(**values)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryMappingObjectStore:
    """In-memory MappingObjectRepository for testing without database."""

    def __init__(self) -> None:
        self._rows: dict[int, MappingObject] = {}
        self._next_id = 1

    def add(
        self,
        local_id: int,
        remote_id: str,
        local_object_type: str = "post",
        last_sync: datetime | None = None,
        pending: bool = False,
    ) -> MappingObject:
        """Seed a row directly."""
        remote_ref: RemoteRef = PendingRef(token=remote_id) if pending else ConfirmedRef(remote_id=remote_id)
        mapping = MappingObject(
            id=self._next_id,
            local_id=local_id,
            local_object_type=local_object_type,
            remote_ref=remote_ref,
            last_sync=last_sync,
            action=MappingAction.PENDING if pending else MappingAction.CREATED,
        )
        self._rows[mapping.id] = mapping
        self._next_id += 1
        return mapping

    @property
    def rows(self) -> list[MappingObject]:
        return sorted(self._rows.values(), key=lambda m: m.id)

    async def create(
        self,
        local_id: int,
        local_object_type: str,
        remote_ref: RemoteRef,
        fieldmap: Fieldmap | None = None,
        pending: bool = False,
    ) -> MappingObject:
        action = MappingAction.PENDING if pending else MappingAction.CREATED
        mapping = MappingObject(
            id=self._next_id,
            local_id=local_id,
            local_object_type=local_object_type,
            remote_ref=remote_ref,
            last_sync=datetime.now(timezone.utc),
            last_sync_action=SyncDirection.PUSH,
            last_sync_status=MappingSyncStatus.SUCCESS,
            last_sync_message=f"Mapping object {action.value}",
            action=action,
        )
        self._rows[mapping.id] = mapping
        self._next_id += 1
        return mapping

    async def get(self, mapping_object_id: int) -> MappingObject | None:
        return self._rows.get(mapping_object_id)

    async def update(self, mapping_object: MappingObject) -> bool:
        if mapping_object.id not in self._rows:
            return False
        action = (
            MappingAction.PENDING
            if isinstance(mapping_object.remote_ref, PendingRef)
            else MappingAction.CREATED
        )
        self._rows[mapping_object.id] = mapping_object.model_copy(update={"action": action})
        return True

    async def delete(self, mapping_object_id: int) -> bool:
        return self._rows.pop(mapping_object_id, None) is not None

    async def find_by_local(self, local_object_type: str, local_id: int) -> list[MappingObject]:
        return [
            m for m in self.rows
            if m.local_object_type == local_object_type and m.local_id == local_id
        ]

    async def find_by_remote(self, remote_id: str) -> list[MappingObject]:
        return [m for m in self.rows if m.remote_ref.key == remote_id]


class InMemoryFieldmapRepository:
    """In-memory FieldmapRepository."""

    def __init__(self, fieldmaps: list[Fieldmap] | None = None) -> None:
        self._fieldmaps: list[Fieldmap] = list(fieldmaps or [])

    def add(self, fieldmap: Fieldmap) -> None:
        self._fieldmaps.append(fieldmap)

    async def get_fieldmaps(
        self, fieldmap_id: int | None = None, object_type: str | None = None
    ) -> list[Fieldmap]:
        result = [
            fm for fm in self._fieldmaps
            if (fieldmap_id is None or fm.id == fieldmap_id)
            and (object_type is None or fm.local_object_type == object_type)
        ]
        return sorted(result, key=lambda fm: (fm.weight, fm.id))

    async def get_fieldmap(self, fieldmap_id: int) -> Fieldmap | None:
        found = await self.get_fieldmaps(fieldmap_id=fieldmap_id)
        return found[0] if found else None


class InMemoryLockStore:
    """Dict-backed lock store that remembers the TTL of every write."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str | int, ttl: int | None = None) -> None:
        self.data[key] = str(value)
        self.ttls[key] = ttl

    async def delete(self, key: str) -> int:
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0


class FakeRemoteClient(RemoteClient):
    """RemoteClient double that records calls and keeps records in a dict.

    ``errors`` maps an operation name to the RemoteAPIError it should raise.
    ``upsert_code`` selects the upsert outcome: 201 creates, 204 matches
    ``upsert_match_id``, 300 reports multiple matches.
    """

    def __init__(self, authorized: bool = True) -> None:
        self.authorized = authorized
        self.calls: list[tuple[Any, ...]] = []
        self.records: dict[str, dict[str, Any]] = {}
        self.errors: dict[str, RemoteAPIError] = {}
        self.upsert_code = 201
        self.upsert_match_id = "a_existing"
        self._external: dict[tuple[str, str], str] = {}
        self._counter = 0

    def calls_for(self, operation: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == operation]

    def _check(self, operation: str) -> None:
        if operation in self.errors:
            raise self.errors[operation]

    def _new_record(self, fields: dict[str, Any]) -> str:
        self._counter += 1
        remote_id = f"a{self._counter}"
        self.records[remote_id] = {"Id": remote_id, "LastModifiedDate": REMOTE_LAST_MODIFIED, **fields}
        return remote_id

    def is_authorized(self) -> bool:
        return self.authorized

    async def create(self, object_type: str, fields: dict[str, Any]) -> RemoteResponse:
        self.calls.append(("create", object_type, dict(fields)))
        self._check("create")
        remote_id = self._new_record(fields)
        return RemoteResponse(code=201, data={"id": remote_id, "success": True})

    async def update(
        self, object_type: str, remote_id: str, fields: dict[str, Any]
    ) -> RemoteResponse:
        self.calls.append(("update", object_type, remote_id, dict(fields)))
        self._check("update")
        self.records.setdefault(remote_id, {"Id": remote_id}).update(fields)
        self.records[remote_id]["LastModifiedDate"] = REMOTE_LAST_MODIFIED
        return RemoteResponse(code=204)

    async def upsert(
        self, object_type: str, key_field: str, key_value: str, fields: dict[str, Any]
    ) -> RemoteResponse:
        self.calls.append(("upsert", object_type, key_field, key_value, dict(fields)))
        self._check("upsert")
        if self.upsert_code == 300:
            return RemoteResponse(
                code=300,
                data={"matches": ["/a/1", "/a/2"]},
                error="MULTIPLE_CHOICES",
            )
        if self.upsert_code == 204:
            remote_id = self.upsert_match_id
            self.records[remote_id] = {
                "Id": remote_id,
                "LastModifiedDate": REMOTE_LAST_MODIFIED,
                **fields,
            }
            self._external[(key_field, key_value)] = remote_id
            return RemoteResponse(code=204)
        remote_id = self._new_record(fields)
        self._external[(key_field, key_value)] = remote_id
        return RemoteResponse(code=201, data={"id": remote_id, "success": True})

    async def delete(self, object_type: str, remote_id: str) -> RemoteResponse:
        self.calls.append(("delete", object_type, remote_id))
        self._check("delete")
        self.records.pop(remote_id, None)
        return RemoteResponse(code=204)

    async def read(
        self, object_type: str, remote_id: str, options: dict[str, Any] | None = None
    ) -> RemoteResponse:
        self.calls.append(("read", object_type, remote_id))
        self._check("read")
        data = self.records.get(remote_id, {"Id": remote_id, "LastModifiedDate": REMOTE_LAST_MODIFIED})
        return RemoteResponse(code=200, data=dict(data))

    async def read_by_external_id(
        self,
        object_type: str,
        key_field: str,
        key_value: str,
        options: dict[str, Any] | None = None,
    ) -> RemoteResponse:
        self.calls.append(("read_by_external_id", object_type, key_field, key_value))
        self._check("read_by_external_id")
        remote_id = self._external[(key_field, key_value)]
        return RemoteResponse(code=200, data=dict(self.records[remote_id]))


class FakeLocalStore(LocalStore):
    """LocalStore double over a dict keyed by (object_type, local_id)."""

    def __init__(self, structures: TableStructureRegistry | None = None) -> None:
        self.registry = structures or TableStructureRegistry()
        self.records: dict[tuple[str, int], dict[str, Any]] = {}

    def add(self, object_type: str, record: dict[str, Any]) -> dict[str, Any]:
        self.records[(object_type, int(record["id"]))] = record
        return record

    def get_table_structure(self, object_type: str) -> TableStructure:
        return self.registry.get(object_type)

    async def get_object_data(
        self, object_type: str, local_id: int, is_deleted: bool = False
    ) -> dict[str, Any] | None:
        record = self.records.get((object_type, local_id))
        if record is None:
            return {"id": local_id} if is_deleted else None
        return dict(record)


class FakeTaskQueue:
    """TaskQueue double that keeps enqueued jobs in a list."""

    def __init__(self, frequency: int = 60) -> None:
        self.frequency = frequency
        self.jobs: list[tuple[str, dict[str, Any], str]] = []

    async def enqueue(self, callback_id: str, payload: dict[str, Any], queue_name: str) -> str:
        self.jobs.append((callback_id, payload, queue_name))
        return f"{len(self.jobs)}-0"

    async def get_frequencies(self) -> list[QueueSchedule]:
        return [QueueSchedule(name="salesforce_push", frequency=self.frequency)]


class RecordingSyncLogger:
    """SyncLogger double that keeps every recorded result."""

    def __init__(self) -> None:
        self.results: list[SyncResult] = []

    async def record(self, result: SyncResult) -> None:
        self.results.append(result)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def fieldmap() -> Fieldmap:
    return make_fieldmap()


@pytest.fixture
def fieldmap_repo(fieldmap) -> InMemoryFieldmapRepository:
    return InMemoryFieldmapRepository([fieldmap])


@pytest.fixture
def mappings() -> InMemoryMappingObjectStore:
    return InMemoryMappingObjectStore()


@pytest.fixture
def lock_store() -> InMemoryLockStore:
    return InMemoryLockStore()


@pytest.fixture
def loop_guard(lock_store) -> LoopGuard:
    return LoopGuard(lock_store)


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def local_store() -> FakeLocalStore:
    return FakeLocalStore()


@pytest.fixture
def task_queue() -> FakeTaskQueue:
    return FakeTaskQueue()


@pytest.fixture
def sync_logger() -> RecordingSyncLogger:
    return RecordingSyncLogger()


@pytest.fixture
def extensions() -> ExtensionRegistry:
    return ExtensionRegistry()


@pytest.fixture
def policy(mappings, extensions) -> PushPolicy:
    return PushPolicy(mappings, extensions)


@pytest.fixture
def executor(
    remote, mappings, fieldmap_repo, local_store, loop_guard, lock_store, task_queue,
    sync_logger, extensions,
) -> RemoteSyncExecutor:
    return RemoteSyncExecutor(
        remote=remote,
        mappings=mappings,
        fieldmaps=fieldmap_repo,
        local=local_store,
        loop_guard=loop_guard,
        lock_store=lock_store,
        queue=task_queue,
        sync_logger=sync_logger,
        extensions=extensions,
        grace_seconds=60,
    )


@pytest.fixture
def orchestrator(
    fieldmap_repo, mappings, local_store, loop_guard, policy, executor, task_queue,
    sync_logger,
) -> PushOrchestrator:
    return PushOrchestrator(
        fieldmaps=fieldmap_repo,
        mappings=mappings,
        local=local_store,
        loop_guard=loop_guard,
        policy=policy,
        executor=executor,
        queue=task_queue,
        sync_logger=sync_logger,
    )
