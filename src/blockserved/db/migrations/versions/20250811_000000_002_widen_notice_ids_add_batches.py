"""Widen notice identifiers to TEXT and add batch tables.

Revision ID: 002
Revises: 001
Create Date: 2025-08-11 00:00:00.000000+00:00

Timestamp-derived notice IDs (e.g. 1754866436198) overflowed the INTEGER
notice_id column. This migration:
- converts notice_id, alert_id and document_id to TEXT in served_notices and
  notice_components
- creates batch_uploads and notice_batch_items
- backfills one batch_uploads row per batch_id already referenced by
  served_notices, then adds the foreign key
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_ID_COLUMNS = ("notice_id", "alert_id", "document_id")
_ID_TABLES = ("served_notices", "notice_components")


def upgrade() -> None:
    """Apply migration: TEXT notice IDs, batch_uploads, notice_batch_items."""
    for table in _ID_TABLES:
        for column in _ID_COLUMNS:
            op.alter_column(
                table,
                column,
                type_=sa.Text(),
                existing_type=sa.Integer(),
                existing_nullable=False,
                postgresql_using=f"{column}::text",
            )

    op.create_table(
        "batch_uploads",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("batch_id", sa.Text(), nullable=False),
        sa.Column("server_address", sa.Text(), nullable=False),
        sa.Column("recipient_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('processing', 'success', 'partial', 'failed')",
            name="ck_batch_uploads_batch_status",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_batch_uploads"),
        sa.UniqueConstraint("batch_id", name="uq_batch_uploads_batch_id"),
    )
    op.create_index("ix_batch_uploads_server_address", "batch_uploads", ["server_address"])
    op.create_index("ix_batch_uploads_created_at", "batch_uploads", ["created_at"])

    op.create_table(
        "notice_batch_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("batch_id", sa.Text(), nullable=False),
        sa.Column("notice_id", sa.Text(), nullable=False),
        sa.Column("recipient_address", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('success', 'failed')",
            name="ck_notice_batch_items_batch_item_status",
        ),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["batch_uploads.batch_id"],
            name="fk_notice_batch_items_batch_id_batch_uploads",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_notice_batch_items"),
        sa.UniqueConstraint(
            "batch_id", "notice_id", name="uq_notice_batch_items_batch_notice"
        ),
    )
    op.create_index("ix_notice_batch_items_batch_id", "notice_batch_items", ["batch_id"])

    # Rows written before batch tracking existed still reference their batch_id
    op.execute(
        """
        INSERT INTO batch_uploads (batch_id, server_address, recipient_count, status, metadata)
        SELECT batch_id, MIN(server_address), COUNT(*), 'success',
               jsonb_build_object('backfilled', true)
        FROM served_notices
        WHERE batch_id IS NOT NULL
        GROUP BY batch_id
        """
    )

    op.create_foreign_key(
        "fk_served_notices_batch_id_batch_uploads",
        "served_notices",
        "batch_uploads",
        ["batch_id"],
        ["batch_id"],
        ondelete="SET NULL",
    )
    op.create_index("ix_served_notices_batch_id", "served_notices", ["batch_id"])


def downgrade() -> None:
    """Revert migration: drop batch tables and narrow IDs back to INTEGER.

    Fails if any stored ID is not an integer that fits in 32 bits.
    """
    op.drop_index("ix_served_notices_batch_id", table_name="served_notices")
    op.drop_constraint(
        "fk_served_notices_batch_id_batch_uploads", "served_notices", type_="foreignkey"
    )
    op.drop_index("ix_notice_batch_items_batch_id", table_name="notice_batch_items")
    op.drop_table("notice_batch_items")
    op.drop_index("ix_batch_uploads_created_at", table_name="batch_uploads")
    op.drop_index("ix_batch_uploads_server_address", table_name="batch_uploads")
    op.drop_table("batch_uploads")

    for table in _ID_TABLES:
        for column in _ID_COLUMNS:
            op.alter_column(
                table,
                column,
                type_=sa.Integer(),
                existing_type=sa.Text(),
                existing_nullable=False,
                postgresql_using=f"{column}::integer",
            )
