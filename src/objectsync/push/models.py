"""Push engine persistence models.

Two SQLAlchemy models on the shared declarative Base:
- FieldmapModel: mapping configuration rows (authored elsewhere, read here)
- ObjectMapModel: join rows linking a local record to a remote record

ObjectMapModel deliberately has no unique constraint on remote_id: several
local records may point at one remote record (fan-in), and the delete path
detects that case instead of the database rejecting it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from src.objectsync.core.database import Base


class FieldmapModel(Base):
    """Mapping between a local object type and a remote object type.

    ``sync_triggers`` is the bitwise OR of the SyncTrigger values the
    fieldmap responds to; ``fields`` is a JSON list of FieldRule dicts.
    """

    __tablename__ = "fieldmaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    local_object_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    remote_object_type: Mapped[str] = mapped_column(String(255), nullable=False)
    sync_triggers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    push_async: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    push_drafts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    record_type_default: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class ObjectMapModel(Base):
    """One local record ↔ one remote record.

    ``remote_id`` holds either a confirmed remote id or, while ``action`` is
    ``pending``, a temporary placeholder token.
    """

    __tablename__ = "object_maps"
    __table_args__ = (
        Index("ix_object_maps_local", "local_object_type", "local_id"),
        Index("ix_object_maps_remote_id", "remote_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    local_id: Mapped[int] = mapped_column(Integer, nullable=False)
    local_object_type: Mapped[str] = mapped_column(String(128), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)
    last_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_action: Mapped[str] = mapped_column(String(16), nullable=False, default="push")
    last_sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default="success")
    last_sync_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    action: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
