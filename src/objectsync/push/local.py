"""Local store contract and table structure registry.

The local entity store is an external collaborator: it owns the records the
push engine reads. The engine needs two things from it -- how a given object
type names its id/timestamp/status fields, and the ability to load a record
by id when a queued job carries only the id.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import column, literal_column, select, table
from sqlalchemy.ext.asyncio import AsyncSession

from src.objectsync.push.exceptions import ConfigurationError
from src.objectsync.push.schemas import TableStructure

# Remote timestamps use a colonless offset, e.g. 2026-03-01T12:00:00.000+0000
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


class LocalStore(ABC):
    """Abstract interface for the local entity store."""

    @abstractmethod
    def get_table_structure(self, object_type: str) -> TableStructure:
        """Field naming for one local object type.

        Raises:
            ConfigurationError: If the object type is unknown.
        """
        ...

    @abstractmethod
    async def get_object_data(
        self, object_type: str, local_id: int, is_deleted: bool = False
    ) -> dict[str, Any] | None:
        """Load a record by id.

        ``is_deleted`` asks for whatever remains of a record that is being
        deleted (usually just its id); the store must not fail because the
        full record is gone.
        """
        ...


class TableStructureRegistry:
    """Explicit object type → TableStructure table.

    Object types registered without an explicit structure fall back to
    ``default`` (id field ``id``, timestamps ``created_at``/``modified_at``,
    status ``status``).
    """

    def __init__(
        self,
        structures: dict[str, TableStructure] | None = None,
        default: TableStructure | None = None,
        allow_default: bool = True,
    ) -> None:
        self._structures = dict(structures or {})
        self._default = default
        self._allow_default = allow_default

    def register(self, structure: TableStructure) -> None:
        self._structures[structure.object_type] = structure

    def get(self, object_type: str) -> TableStructure:
        structure = self._structures.get(object_type)
        if structure is not None:
            return structure
        if not self._allow_default:
            raise ConfigurationError(object_type, "no table structure registered")
        if self._default is not None:
            return self._default.model_copy(update={"object_type": object_type})
        return TableStructure(object_type=object_type)


def get_local_id(record: dict[str, Any], structure: TableStructure) -> int | None:
    """The record's local id as an int, or None if the id field is missing."""
    value = record.get(structure.id_field)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_modified_at(record: dict[str, Any], structure: TableStructure) -> datetime | None:
    """The record's true last-modified timestamp, normalised to aware UTC."""
    if structure.modified_field is None:
        return None
    return parse_timestamp(record.get(structure.modified_field))


def parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes, ISO-8601 strings and epoch seconds; naive means UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        elif "T" in text:
            text = _COMPACT_OFFSET.sub(r"\1:\2", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_draft(record: dict[str, Any], structure: TableStructure) -> bool:
    """Whether the record is in one of its object type's draft statuses."""
    if structure.status_field is None:
        return False
    return record.get(structure.status_field) in structure.draft_statuses


# ── SQL-backed Local Store ──────────────────────────────────────────────────


class SqlLocalStore(LocalStore):
    """LocalStore over local tables in the service database.

    Each object type is read from the table of the same name, keyed by its
    table structure's id field.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        structures: Table structure registry.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        structures: TableStructureRegistry,
    ) -> None:
        self._session_factory = session_factory
        self._structures = structures

    def get_table_structure(self, object_type: str) -> TableStructure:
        return self._structures.get(object_type)

    async def get_object_data(
        self, object_type: str, local_id: int, is_deleted: bool = False
    ) -> dict[str, Any] | None:
        structure = self.get_table_structure(object_type)
        stmt = (
            select(literal_column("*"))
            .select_from(table(object_type))
            .where(column(structure.id_field) == local_id)
        )
        async for session in self._session_factory():
            result = await session.execute(stmt)
            row = result.mappings().first()
            if row is None:
                if is_deleted:
                    return {structure.id_field: local_id}
                return None
            return dict(row)
        return None
