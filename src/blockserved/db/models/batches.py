"""Batch models: submitted batches and their per-recipient items.

A batch is written once per POST /api/batch/documents call. Items record the
outcome of each recipient independently of the batch's aggregate status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from blockserved.db.models.base import (
    Base,
    BatchItemStatus,
    BatchStatus,
    BigIntPrimaryKey,
    OptionalText,
    TextColumn,
    TimestampTZ,
)

if TYPE_CHECKING:
    from blockserved.db.models.notices import ServedNotice


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class BatchUpload(Base):
    """One row per submitted batch."""

    __tablename__ = "batch_uploads"

    id: Mapped[BigIntPrimaryKey]

    # Client-supplied or generated (BATCH_<ms>_<hex>); upsert key
    batch_id: Mapped[TextColumn] = mapped_column(unique=True)

    server_address: Mapped[TextColumn]
    recipient_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[BatchStatus] = mapped_column(
        Enum(
            BatchStatus,
            name="batch_status",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=BatchStatus.PROCESSING,
    )

    # Arbitrary extra fields (case number, attachment keys, completion counts)
    # Note: named 'batch_metadata' to avoid conflict with SQLAlchemy's reserved 'metadata'
    batch_metadata: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    items: Mapped[list[NoticeBatchItem]] = relationship(
        "NoticeBatchItem",
        back_populates="batch",
        order_by="NoticeBatchItem.id",
    )
    notices: Mapped[list[ServedNotice]] = relationship(
        "ServedNotice",
        back_populates="batch",
    )

    __table_args__ = (
        Index("ix_batch_uploads_server_address", "server_address"),
        Index("ix_batch_uploads_created_at", "created_at"),
    )


class NoticeBatchItem(Base):
    """Join row between a batch and one of its notices.

    Never updated after creation; a failed item stays failed.
    """

    __tablename__ = "notice_batch_items"

    id: Mapped[BigIntPrimaryKey]

    batch_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("batch_uploads.batch_id", ondelete="CASCADE"),
        nullable=False,
    )

    # Not a foreign key: failed items have no served_notices row
    notice_id: Mapped[TextColumn]
    recipient_address: Mapped[TextColumn]

    status: Mapped[BatchItemStatus] = mapped_column(
        Enum(
            BatchItemStatus,
            name="batch_item_status",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    error_message: Mapped[OptionalText]

    created_at: Mapped[TimestampTZ]

    batch: Mapped[BatchUpload] = relationship(
        "BatchUpload",
        back_populates="items",
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "notice_id", name="uq_notice_batch_items_batch_notice"),
        Index("ix_notice_batch_items_batch_id", "batch_id"),
    )
