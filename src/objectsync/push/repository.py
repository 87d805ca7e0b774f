"""Mapping object repository -- async CRUD for the local ↔ remote join rows.

Provides MappingObjectRepository with the session_factory callable pattern.
Handles conversion between ObjectMapModel rows and MappingObject schemas,
including the tagged RemoteRef: a row whose action is ``pending`` carries a
PendingRef token, every other row a ConfirmedRef remote id.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.objectsync.push.models import ObjectMapModel
from src.objectsync.push.schemas import (
    ConfirmedRef,
    Fieldmap,
    MappingAction,
    MappingObject,
    MappingSyncStatus,
    PendingRef,
    RemoteRef,
    SyncDirection,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_mapping_object(model: ObjectMapModel) -> MappingObject:
    """Convert ObjectMapModel to MappingObject schema."""
    action = MappingAction(model.action)
    remote_ref: RemoteRef
    if action == MappingAction.PENDING:
        remote_ref = PendingRef(token=model.remote_id)
    else:
        remote_ref = ConfirmedRef(remote_id=model.remote_id)
    return MappingObject(
        id=model.id,
        local_id=model.local_id,
        local_object_type=model.local_object_type,
        remote_ref=remote_ref,
        last_sync=model.last_sync,
        last_sync_action=SyncDirection(model.last_sync_action),
        last_sync_status=MappingSyncStatus(model.last_sync_status),
        last_sync_message=model.last_sync_message or "",
        action=action,
        created_at=model.created_at,
    )


def _action_for(remote_ref: RemoteRef) -> MappingAction:
    if isinstance(remote_ref, PendingRef):
        return MappingAction.PENDING
    return MappingAction.CREATED


# ── Repository ──────────────────────────────────────────────────────────────


class MappingObjectRepository:
    """Async CRUD operations for mapping objects.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        local_id: int,
        local_object_type: str,
        remote_ref: RemoteRef,
        fieldmap: Fieldmap | None = None,
        pending: bool = False,
    ) -> MappingObject:
        """Create a mapping object.

        Stamps last_sync=now, last_sync_action=push, last_sync_status=success:
        this records that a push attempt happened, not that the remote side
        confirmed it.

        Args:
            local_id: Local record id.
            local_object_type: Local object type.
            remote_ref: Confirmed remote id or pending placeholder.
            fieldmap: Fieldmap the push runs under (used in the sync message).
            pending: Whether the row awaits confirmation of a create.

        Returns:
            MappingObject with all persisted fields.
        """
        action = MappingAction.PENDING if pending else MappingAction.CREATED
        message = f"Mapping object {action.value}"
        if fieldmap is not None:
            message += f" for fieldmap {fieldmap.id}"

        async for session in self._session_factory():
            model = ObjectMapModel(
                local_id=local_id,
                local_object_type=local_object_type,
                remote_id=remote_ref.key,
                last_sync=datetime.now(timezone.utc),
                last_sync_action=SyncDirection.PUSH.value,
                last_sync_status=MappingSyncStatus.SUCCESS.value,
                last_sync_message=message,
                action=action.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.debug(
                "mapping_object.created",
                mapping_object_id=model.id,
                local_id=local_id,
                local_object_type=local_object_type,
                action=action.value,
            )
            return _model_to_mapping_object(model)

    async def get(self, mapping_object_id: int) -> MappingObject | None:
        """Get a mapping object by id."""
        async for session in self._session_factory():
            model = await session.get(ObjectMapModel, mapping_object_id)
            if model is None:
                return None
            return _model_to_mapping_object(model)

    async def update(self, mapping_object: MappingObject) -> bool:
        """Persist every mutable field of a mapping object.

        The stored action is derived from the remote_ref variant so a
        confirmed id can never be stored as pending, or the reverse.

        Returns:
            True if the row existed and was updated, False otherwise.
        """
        async for session in self._session_factory():
            model = await session.get(ObjectMapModel, mapping_object.id)
            if model is None:
                return False
            model.remote_id = mapping_object.remote_ref.key
            model.action = _action_for(mapping_object.remote_ref).value
            model.last_sync = mapping_object.last_sync
            model.last_sync_action = mapping_object.last_sync_action.value
            model.last_sync_status = mapping_object.last_sync_status.value
            model.last_sync_message = mapping_object.last_sync_message
            await session.commit()
            return True
        return False

    async def delete(self, mapping_object_id: int) -> bool:
        """Delete a mapping object by id. Returns True if a row was removed."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(ObjectMapModel).where(ObjectMapModel.id == mapping_object_id)
            )
            await session.commit()
            removed = (result.rowcount or 0) > 0
            logger.debug("mapping_object.deleted", mapping_object_id=mapping_object_id, removed=removed)
            return removed
        return False

    async def find_by_local(
        self, local_object_type: str, local_id: int
    ) -> list[MappingObject]:
        """All mapping objects for one local record, oldest first."""
        async for session in self._session_factory():
            stmt = (
                select(ObjectMapModel)
                .where(
                    ObjectMapModel.local_object_type == local_object_type,
                    ObjectMapModel.local_id == local_id,
                )
                .order_by(ObjectMapModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_mapping_object(m) for m in result.scalars().all()]
        return []

    async def find_by_remote(self, remote_id: str) -> list[MappingObject]:
        """All mapping objects that reference one remote id, oldest first."""
        async for session in self._session_factory():
            stmt = (
                select(ObjectMapModel)
                .where(ObjectMapModel.remote_id == remote_id)
                .order_by(ObjectMapModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_mapping_object(m) for m in result.scalars().all()]
        return []
