"""Explicit event → trigger dispatch table.

Each local object type that has at least one fieldmap gets a TriggerSources
row saying which local event kind stands for create, update and delete. The
table is built once at startup; event sources then call ``dispatch()`` with a
LocalEvent instead of binding callbacks per object type.

``EventKind.SAVED`` covers save-style hooks that fire for every write. Those
are classified by ``classify_save()``: ignored statuses are dropped, trashed
records are deletes, records whose modified time equals their created time
are creates, everything else is an update.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import BaseModel

from src.objectsync.push.local import LocalStore, get_modified_at, parse_timestamp
from src.objectsync.push.orchestrator import PushOrchestrator
from src.objectsync.push.schemas import (
    EventKind,
    Fieldmap,
    LocalEvent,
    SyncResult,
    SyncTrigger,
    TableStructure,
)

logger = structlog.get_logger(__name__)

# Bookkeeping object types that never push, whatever the fieldmaps say.
SKIPPED_OBJECT_TYPES = frozenset({"log", "revision", "scheduled-action"})


class TriggerSources(BaseModel):
    """Which local event kind produces each trigger for one object type."""

    object_type: str
    create: EventKind | None = EventKind.CREATED
    update: EventKind | None = EventKind.UPDATED
    delete: EventKind | None = EventKind.DELETED

    def source_for(self, trigger: SyncTrigger) -> EventKind | None:
        return {
            SyncTrigger.CREATE: self.create,
            SyncTrigger.UPDATE: self.update,
            SyncTrigger.DELETE: self.delete,
        }[trigger]


def classify_save(record: dict[str, Any], structure: TableStructure) -> SyncTrigger | None:
    """Turn a save-style event into a trigger, or None if it should not push."""
    status = record.get(structure.status_field) if structure.status_field else None
    if status in structure.ignored_statuses:
        return None
    if status in structure.trash_statuses:
        return SyncTrigger.DELETE
    if structure.created_field:
        created = parse_timestamp(record.get(structure.created_field))
        modified = get_modified_at(record, structure)
        if created is not None and created == modified:
            return SyncTrigger.CREATE
    return SyncTrigger.UPDATE


class DispatchTable:
    """Routes LocalEvents to the orchestrator with the right trigger.

    Args:
        orchestrator: Push orchestrator.
        local: Local store, for table structures and loading missing records.
        sources: TriggerSources rows keyed by object type.
    """

    def __init__(
        self,
        orchestrator: PushOrchestrator,
        local: LocalStore,
        sources: Iterable[TriggerSources] = (),
    ) -> None:
        self._orchestrator = orchestrator
        self._local = local
        self._sources: dict[str, TriggerSources] = {s.object_type: s for s in sources}

    @classmethod
    def from_fieldmaps(
        cls,
        orchestrator: PushOrchestrator,
        local: LocalStore,
        fieldmaps: Iterable[Fieldmap],
        overrides: Iterable[TriggerSources] = (),
    ) -> DispatchTable:
        """Build the table for every object type that has a fieldmap.

        Object types get the default created/updated/deleted sources unless
        ``overrides`` names them explicitly.
        """
        sources = {
            fm.local_object_type: TriggerSources(object_type=fm.local_object_type)
            for fm in fieldmaps
            if fm.local_object_type not in SKIPPED_OBJECT_TYPES
        }
        for override in overrides:
            sources[override.object_type] = override
        logger.info("dispatch.table_built", object_types=sorted(sources))
        return cls(orchestrator, local, sources.values())

    def register(self, sources: TriggerSources) -> None:
        self._sources[sources.object_type] = sources

    def sources_for(self, object_type: str) -> TriggerSources | None:
        return self._sources.get(object_type)

    @property
    def object_types(self) -> list[str]:
        return sorted(self._sources)

    def resolve_trigger(
        self,
        sources: TriggerSources,
        kind: EventKind,
        record: dict[str, Any],
        structure: TableStructure,
    ) -> SyncTrigger | None:
        """The trigger an event kind stands for, or None if it stands for none."""
        if kind == EventKind.SAVED:
            trigger = classify_save(record, structure)
            if trigger is None or sources.source_for(trigger) != EventKind.SAVED:
                return None
            return trigger
        for trigger in SyncTrigger:
            if sources.source_for(trigger) == kind:
                return trigger
        return None

    async def dispatch(self, event: LocalEvent) -> list[SyncResult]:
        """Single entry point for local lifecycle events.

        Returns:
            The orchestrator's results, or an empty list when the event does
            not map to a push.
        """
        if event.object_type in SKIPPED_OBJECT_TYPES:
            return []
        sources = self._sources.get(event.object_type)
        if sources is None:
            logger.debug("dispatch.unmapped_object_type", object_type=event.object_type)
            return []

        structure = self._local.get_table_structure(event.object_type)
        record = event.record
        if record is None:
            is_deleted = event.kind == EventKind.DELETED
            record = await self._local.get_object_data(
                event.object_type, event.local_id, is_deleted=is_deleted
            )
            if record is None:
                if not is_deleted:
                    logger.warning(
                        "dispatch.record_not_found",
                        object_type=event.object_type,
                        local_id=event.local_id,
                    )
                    return []
                record = {structure.id_field: event.local_id}

        trigger = self.resolve_trigger(sources, event.kind, record, structure)
        if trigger is None:
            logger.debug(
                "dispatch.no_trigger",
                object_type=event.object_type,
                local_id=event.local_id,
                kind=event.kind.value,
            )
            return []
        return await self._orchestrator.push_object_crud(event.object_type, record, trigger)
