"""Push-allowed policy: decides whether one fieldmap may push one change.

Rules, in order:
1. A fieldmap that does not respond to creates only pushes records that
   already have a mapping object, so update/delete events cannot adopt
   records it never created.
2. The firing trigger must be in the fieldmap's trigger set.
3. PUSH_OBJECT_ALLOWED callbacks get the final say.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from src.objectsync.push.extensions import ExtensionPoint, ExtensionRegistry
from src.objectsync.push.schemas import Fieldmap, MappingObject, SyncTrigger

logger = structlog.get_logger(__name__)


class MappingLookup(Protocol):
    async def find_by_local(self, local_object_type: str, local_id: int) -> list[MappingObject]: ...


def operation_name(trigger: SyncTrigger, is_new: bool) -> str:
    """Name of the remote operation a trigger implies, or "" if none makes sense.

    A create only makes sense for an unmapped record; update and delete only
    for a mapped one.
    """
    if trigger == SyncTrigger.CREATE and is_new:
        return "Create"
    if trigger == SyncTrigger.UPDATE and not is_new:
        return "Update"
    if trigger == SyncTrigger.DELETE and not is_new:
        return "Delete"
    return ""


class PushPolicy:
    """Evaluates the push-allowed rules for (record, trigger, fieldmap).

    Args:
        mappings: Mapping object store (only find_by_local is used).
        extensions: Extension registry for the final override.
    """

    def __init__(self, mappings: MappingLookup, extensions: ExtensionRegistry) -> None:
        self._mappings = mappings
        self._extensions = extensions

    async def is_push_allowed(
        self,
        object_type: str,
        record: dict[str, Any],
        local_id: int,
        trigger: SyncTrigger,
        fieldmap: Fieldmap,
        sync_triggers: set[SyncTrigger] | None = None,
    ) -> bool:
        """Whether this push may proceed.

        Args:
            object_type: Local object type.
            record: Local record data.
            local_id: The record's local id.
            trigger: Firing trigger.
            fieldmap: Fieldmap under evaluation.
            sync_triggers: Trigger set to check against; defaults to the
                fieldmap's own.

        Returns:
            True if the push is allowed.
        """
        triggers = fieldmap.sync_triggers if sync_triggers is None else sync_triggers
        allowed = True

        if SyncTrigger.CREATE not in triggers:
            existing = await self._mappings.find_by_local(object_type, local_id)
            if not existing:
                allowed = False

        if trigger not in triggers:
            allowed = False

        allowed = bool(
            await self._extensions.apply(
                ExtensionPoint.PUSH_OBJECT_ALLOWED,
                allowed,
                object_type,
                record,
                trigger,
                fieldmap,
            )
        )

        if not allowed:
            logger.debug(
                "policy.push_denied",
                object_type=object_type,
                local_id=local_id,
                trigger=trigger.name,
                fieldmap_id=fieldmap.id,
            )
        return allowed
