"""Legacy notice schema with integer notice identifiers.

Revision ID: 001
Revises: None
Create Date: 2025-08-01 00:00:00.000000+00:00

Creates the tables that predate batch ingestion:
- served_notices (one row per served notice)
- notice_components (document references per notice and chain)

notice_id, alert_id and document_id are INTEGER here; timestamp-derived IDs
overflowed this column, which migration 002 fixes.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: legacy served_notices and notice_components tables."""
    op.create_table(
        "served_notices",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("notice_id", sa.Integer(), nullable=False),
        sa.Column("server_address", sa.Text(), nullable=False),
        sa.Column("recipient_address", sa.Text(), nullable=False),
        sa.Column("notice_type", sa.Text(), nullable=False),
        sa.Column("case_number", sa.Text(), nullable=False, server_default=""),
        sa.Column("alert_id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("issuing_agency", sa.Text(), nullable=False, server_default=""),
        sa.Column("has_document", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ipfs_hash", sa.Text(), nullable=True),
        sa.Column("batch_id", sa.Text(), nullable=True),
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
        sa.PrimaryKeyConstraint("id", name="pk_served_notices"),
        sa.UniqueConstraint("notice_id", name="uq_served_notices_notice_id"),
    )
    op.create_index("ix_served_notices_server_address", "served_notices", ["server_address"])
    op.create_index(
        "ix_served_notices_recipient_address", "served_notices", ["recipient_address"]
    )
    op.create_index("ix_served_notices_case_number", "served_notices", ["case_number"])

    op.create_table(
        "notice_components",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("notice_id", sa.Integer(), nullable=False),
        sa.Column("chain_type", sa.Text(), nullable=False, server_default="TRON"),
        sa.Column("case_number", sa.Text(), nullable=False, server_default=""),
        sa.Column("server_address", sa.Text(), nullable=False),
        sa.Column("recipient_address", sa.Text(), nullable=False),
        sa.Column("alert_id", sa.Integer(), nullable=False),
        sa.Column("alert_thumbnail_key", sa.Text(), nullable=True),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("document_key", sa.Text(), nullable=True),
        sa.Column("document_ipfs_hash", sa.Text(), nullable=True),
        sa.Column("document_encryption_key", sa.Text(), nullable=True),
        sa.Column("notice_type", sa.Text(), nullable=True),
        sa.Column("issuing_agency", sa.Text(), nullable=True),
        sa.Column("served_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_notice_components"),
        sa.UniqueConstraint(
            "notice_id", "chain_type", name="uq_notice_components_notice_chain"
        ),
    )
    op.create_index(
        "ix_notice_components_recipient_address", "notice_components", ["recipient_address"]
    )


def downgrade() -> None:
    """Revert migration: drop legacy tables."""
    op.drop_index("ix_notice_components_recipient_address", table_name="notice_components")
    op.drop_table("notice_components")
    op.drop_index("ix_served_notices_case_number", table_name="served_notices")
    op.drop_index("ix_served_notices_recipient_address", table_name="served_notices")
    op.drop_index("ix_served_notices_server_address", table_name="served_notices")
    op.drop_table("served_notices")
