"""Pydantic schemas for the push synchronization engine.

Defines all structured types that flow through a push:
- Enums: SyncTrigger, SyncStatus, SyncErrorKind, SyncDirection, MappingSyncStatus,
  MappingAction, FieldDirection, EventKind
- Configuration: FieldRule, Fieldmap, TableStructure
- Translation output: MatchRule, PushParams
- Join entity: ConfirmedRef / PendingRef (RemoteRef), MappingObject
- Results and payloads: SyncResult, PushJob, SyncedObject, ManualPushResult, LocalEvent
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

TEMPORARY_ID_PREFIX = "tmp_sf_"


# ── Enums ───────────────────────────────────────────────────────────────────


class SyncTrigger(IntEnum):
    """Local lifecycle events a fieldmap can respond to (bitmask values)."""

    CREATE = 0x0001
    UPDATE = 0x0002
    DELETE = 0x0004

    @property
    def label(self) -> str:
        return self.name.capitalize()


class SyncStatus(str, Enum):
    """Outcome classification of a single push attempt."""

    SUCCESS = "success"
    ERROR = "error"
    NOTICE = "notice"


class SyncErrorKind(str, Enum):
    """Why a push did not end in plain success."""

    CONFIGURATION = "configuration"
    POLICY_DENIED = "policy_denied"
    REMOTE_CALL = "remote_call"
    AMBIGUOUS_MATCH = "ambiguous_match"
    STALE_WRITE = "stale_write"
    FAN_IN_DELETE_CONFLICT = "fan_in_delete_conflict"
    PENDING_MAPPING = "pending_mapping"
    NOT_AUTHORIZED = "not_authorized"


class SyncDirection(str, Enum):
    """Direction of a sync; also the namespace of loop-guard locks."""

    PUSH = "push"
    PULL = "pull"


class MappingSyncStatus(str, Enum):
    """Status of the last sync recorded on a mapping object."""

    SUCCESS = "success"
    ERROR = "error"


class MappingAction(str, Enum):
    """Lifecycle state of a mapping object's remote reference."""

    PENDING = "pending"
    CREATED = "created"


class FieldDirection(str, Enum):
    """Which way a field rule carries data."""

    PUSH = "push"
    PULL = "pull"
    SYNC = "sync"


class EventKind(str, Enum):
    """Kinds of local lifecycle events the dispatch table understands."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    SAVED = "saved"  # save-style hook; classified into create/update/delete


# ── Fieldmap Configuration ──────────────────────────────────────────────────


class FieldRule(BaseModel):
    """One local field ↔ remote field translation rule."""

    local_field: str
    remote_field: str
    direction: FieldDirection = FieldDirection.SYNC
    is_prematch: bool = False
    is_key: bool = False
    remote_type: str = "string"
    create_only: bool = False
    update_only: bool = False


class Fieldmap(BaseModel):
    """Mapping configuration between a local object type and a remote object type."""

    id: int
    label: str = ""
    local_object_type: str
    remote_object_type: str
    sync_triggers: set[SyncTrigger] = Field(default_factory=set)
    push_async: bool = False
    push_drafts: bool = False
    record_type_default: str | None = None
    fields: list[FieldRule] = Field(default_factory=list)
    weight: int = 0


class TableStructure(BaseModel):
    """How records of one local object type name their bookkeeping fields."""

    object_type: str
    id_field: str = "id"
    created_field: str | None = "created_at"
    modified_field: str | None = "modified_at"
    status_field: str | None = "status"
    draft_statuses: set[str] = Field(default_factory=lambda: {"draft"})
    trash_statuses: set[str] = Field(default_factory=lambda: {"trash"})
    ignored_statuses: set[str] = Field(default_factory=lambda: {"auto-draft"})


# ── Translation Output ──────────────────────────────────────────────────────


class MatchRule(BaseModel):
    """A natural key (prematch) or external id (key) used to upsert."""

    local_field: str
    remote_field: str
    value: Any


class PushParams(BaseModel):
    """Translated field set for one push, plus optional match rules."""

    fields: dict[str, Any] = Field(default_factory=dict)
    prematch: MatchRule | None = None
    key: MatchRule | None = None

    def is_empty(self) -> bool:
        return not self.fields


# ── Remote References ───────────────────────────────────────────────────────


class ConfirmedRef(BaseModel):
    """A remote id returned by the remote API."""

    kind: Literal["confirmed"] = "confirmed"
    remote_id: str

    @property
    def key(self) -> str:
        return self.remote_id


class PendingRef(BaseModel):
    """A placeholder token held while a create is in flight."""

    kind: Literal["pending"] = "pending"
    token: str

    @property
    def key(self) -> str:
        return self.token

    @classmethod
    def generate(cls) -> PendingRef:
        return cls(token=f"{TEMPORARY_ID_PREFIX}{uuid.uuid4().hex}")


RemoteRef = Annotated[Union[ConfirmedRef, PendingRef], Field(discriminator="kind")]


# ── Mapping Object ──────────────────────────────────────────────────────────


class MappingObject(BaseModel):
    """Join row correlating one local record with one remote record."""

    id: int
    local_id: int
    local_object_type: str
    remote_ref: RemoteRef
    last_sync: datetime | None = None
    last_sync_action: SyncDirection = SyncDirection.PUSH
    last_sync_status: MappingSyncStatus = MappingSyncStatus.SUCCESS
    last_sync_message: str = ""
    action: MappingAction = MappingAction.PENDING
    created_at: datetime | None = None

    @property
    def remote_id(self) -> str | None:
        """Confirmed remote id, or None while the mapping is pending."""
        if isinstance(self.remote_ref, ConfirmedRef):
            return self.remote_ref.remote_id
        return None


# ── Results and Payloads ────────────────────────────────────────────────────


class SyncResult(BaseModel):
    """Human-readable outcome of one push attempt, destined for the operations log."""

    title: str
    message: str = ""
    trigger: SyncTrigger
    parent_id: int = 0
    status: SyncStatus
    kind: SyncErrorKind | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PushJob(BaseModel):
    """Deferred push job payload carried by the task queue."""

    object_type: str
    local_id: int
    fieldmap_id: int
    trigger: SyncTrigger

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings for Redis Streams."""
        return {
            "object_type": self.object_type,
            "local_id": str(self.local_id),
            "fieldmap_id": str(self.fieldmap_id),
            "trigger": str(int(self.trigger)),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> PushJob:
        """Reverse of ``to_stream_dict()``."""
        return cls(
            object_type=raw["object_type"],
            local_id=int(raw["local_id"]),
            fieldmap_id=int(raw["fieldmap_id"]),
            trigger=SyncTrigger(int(raw["trigger"])),
        )


class SyncedObject(BaseModel):
    """Everything an extension observer needs to know about one push."""

    record: dict[str, Any]
    mapping_object: MappingObject | None = None
    fieldmap: Fieldmap
    queue_item: bool = False


class ManualPushResult(BaseModel):
    """Coarse status code plus per-fieldmap results for interactive pushes."""

    code: int
    results: list[SyncResult] = Field(default_factory=list)


class LocalEvent(BaseModel):
    """A local lifecycle notification handed to the dispatch table."""

    object_type: str
    local_id: int
    kind: EventKind
    record: dict[str, Any] | None = None
