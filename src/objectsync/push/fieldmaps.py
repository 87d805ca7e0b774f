"""Fieldmap repository and field translation for pushes.

Defines:
- FieldmapRepository: read-only access to fieldmap configuration rows.
- map_params(): Translates a local record into the remote field set for one
  push, extracting at most one prematch rule and at most one key rule.
- encode_match_value(): URL-encodes an upsert match value, escaping literal
  periods as %2E (remote composite-key matching on fields such as email
  treats an unescaped period as a format suffix).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime
from typing import Any
from urllib.parse import quote

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.objectsync.push.models import FieldmapModel
from src.objectsync.push.schemas import (
    FieldDirection,
    FieldRule,
    Fieldmap,
    MatchRule,
    PushParams,
    SyncTrigger,
)

logger = structlog.get_logger(__name__)

PUSH_DIRECTIONS = frozenset({FieldDirection.PUSH, FieldDirection.SYNC})


# ── Serialization Helpers ───────────────────────────────────────────────────


def triggers_from_mask(mask: int) -> set[SyncTrigger]:
    """Expand a stored trigger bitmask into a set of SyncTrigger values."""
    return {trigger for trigger in SyncTrigger if mask & trigger}


def triggers_to_mask(triggers: set[SyncTrigger]) -> int:
    """Collapse a set of SyncTrigger values into a bitmask."""
    mask = 0
    for trigger in triggers:
        mask |= int(trigger)
    return mask


def _model_to_fieldmap(model: FieldmapModel) -> Fieldmap:
    """Convert FieldmapModel to Fieldmap schema."""
    return Fieldmap(
        id=model.id,
        label=model.label or "",
        local_object_type=model.local_object_type,
        remote_object_type=model.remote_object_type,
        sync_triggers=triggers_from_mask(model.sync_triggers or 0),
        push_async=bool(model.push_async),
        push_drafts=bool(model.push_drafts),
        record_type_default=model.record_type_default or None,
        fields=[FieldRule.model_validate(f) for f in (model.fields or [])],
        weight=model.weight or 0,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class FieldmapRepository:
    """Read-only access to fieldmap rows, ordered by weight then id.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get_fieldmaps(
        self,
        fieldmap_id: int | None = None,
        object_type: str | None = None,
    ) -> list[Fieldmap]:
        """Fieldmaps matching the given id and/or local object type.

        Args:
            fieldmap_id: Restrict to a single fieldmap.
            object_type: Restrict to fieldmaps for this local object type.

        Returns:
            Matching fieldmaps in resolution order (weight, then id).
        """
        async for session in self._session_factory():
            stmt = select(FieldmapModel)
            if fieldmap_id is not None:
                stmt = stmt.where(FieldmapModel.id == fieldmap_id)
            if object_type is not None:
                stmt = stmt.where(FieldmapModel.local_object_type == object_type)
            stmt = stmt.order_by(FieldmapModel.weight, FieldmapModel.id)
            result = await session.execute(stmt)
            return [_model_to_fieldmap(m) for m in result.scalars().all()]
        return []

    async def get_fieldmap(self, fieldmap_id: int) -> Fieldmap | None:
        """A single fieldmap by id, or None."""
        fieldmaps = await self.get_fieldmaps(fieldmap_id=fieldmap_id)
        return fieldmaps[0] if fieldmaps else None


# ── Field Translation ──────────────────────────────────────────────────────


def map_params(
    fieldmap: Fieldmap,
    record: dict[str, Any],
    trigger: SyncTrigger,
    is_new: bool,
) -> PushParams:
    """Translate a local record into the remote field set for one push.

    Only push and sync rules contribute. Rules marked create_only are
    skipped on updates and update_only rules on creates. Fields absent from
    the record are skipped rather than sent as null.

    The first prematch rule becomes ``prematch`` and its field is still sent.
    The first key rule becomes ``key`` and its field is dropped from the body,
    since an upsert carries the key value in the URL.

    Args:
        fieldmap: Fieldmap whose rules drive the translation.
        record: Local record data.
        trigger: Trigger being pushed.
        is_new: Whether no mapping object exists yet.

    Returns:
        PushParams with translated fields and optional match rules.
    """
    params = PushParams()

    for rule in fieldmap.fields:
        if rule.direction not in PUSH_DIRECTIONS:
            continue
        if rule.create_only and not is_new:
            continue
        if rule.update_only and is_new:
            continue
        if rule.local_field not in record:
            continue

        value = convert_value(record[rule.local_field], rule.remote_type)

        if rule.is_prematch and params.prematch is None:
            params.prematch = MatchRule(
                local_field=rule.local_field,
                remote_field=rule.remote_field,
                value=value,
            )
        if rule.is_key and params.key is None:
            params.key = MatchRule(
                local_field=rule.local_field,
                remote_field=rule.remote_field,
                value=value,
            )
            continue

        params.fields[rule.remote_field] = value

    logger.debug(
        "fieldmap.params_mapped",
        fieldmap_id=fieldmap.id,
        trigger=trigger.name,
        is_new=is_new,
        field_count=len(params.fields),
        has_prematch=params.prematch is not None,
        has_key=params.key is not None,
    )
    return params


def convert_value(value: Any, remote_type: str) -> Any:
    """Coerce a local value into the shape the remote field type expects."""
    if value is None:
        return None
    if remote_type == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if remote_type == "datetime":
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value).isoformat()
        return str(value)
    if remote_type == "date":
        if isinstance(value, (datetime, date)):
            return value.strftime("%Y-%m-%d")
        return str(value)
    if remote_type in ("double", "currency", "percent"):
        try:
            return float(value)
        except (TypeError, ValueError):
            return value
    if remote_type == "int":
        try:
            return int(value)
        except (TypeError, ValueError):
            return value
    return value


def encode_match_value(value: Any) -> str:
    """URL-encode an upsert match value, escaping periods as %2E.

    >>> encode_match_value("a.b@x.com")
    'a%2Eb%40x%2Ecom'
    """
    return quote(str(value), safe="").replace(".", "%2E")
