"""Create fieldmap and object map tables.

Revision ID: 001_push_tables
Revises:
Create Date: 2026-10-18

Creates the two tables the push engine owns:
- fieldmaps: local ↔ remote object type mapping configuration
- object_maps: join rows linking a local record to a remote record

object_maps.remote_id is indexed but not unique: several local records may
map to one remote record, which the delete path handles explicitly.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_push_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── fieldmaps table ─────────────────────────────────────────────────

    op.create_table(
        "fieldmaps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("label", sa.String(100), nullable=False, server_default=""),
        sa.Column("local_object_type", sa.String(128), nullable=False),
        sa.Column("remote_object_type", sa.String(255), nullable=False),
        sa.Column("sync_triggers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("push_async", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("push_drafts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("record_type_default", sa.String(255), nullable=True),
        sa.Column(
            "fields",
            sa.JSON(),
            server_default=sa.text("'[]'::json"),
            nullable=False,
        ),
        sa.Column("weight", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )
    op.create_index(
        "ix_fieldmaps_local_object_type",
        "fieldmaps",
        ["local_object_type"],
    )

    # ── object_maps table ───────────────────────────────────────────────

    op.create_table(
        "object_maps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("local_id", sa.Integer(), nullable=False),
        sa.Column("local_object_type", sa.String(128), nullable=False),
        sa.Column("remote_id", sa.String(64), nullable=False),
        sa.Column("last_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_action", sa.String(16), nullable=False, server_default="push"),
        sa.Column("last_sync_status", sa.String(16), nullable=False, server_default="success"),
        sa.Column("last_sync_message", sa.Text(), nullable=False, server_default=""),
        sa.Column("action", sa.String(16), nullable=False, server_default="pending"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_object_maps_local",
        "object_maps",
        ["local_object_type", "local_id"],
    )
    op.create_index(
        "ix_object_maps_remote_id",
        "object_maps",
        ["remote_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_object_maps_remote_id", table_name="object_maps")
    op.drop_index("ix_object_maps_local", table_name="object_maps")
    op.drop_table("object_maps")
    op.drop_index("ix_fieldmaps_local_object_type", table_name="fieldmaps")
    op.drop_table("fieldmaps")
