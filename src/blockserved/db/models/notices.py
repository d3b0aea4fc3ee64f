"""Notice models: served notices and their document components.

Each served notice pairs an Alert NFT (public stub) with a Document NFT
(the underlying legal document). By convention document_id = alert_id + 1
and alert_id = notice_id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from blockserved.db.models.base import (
    Base,
    BigIntPrimaryKey,
    OptionalText,
    OptionalTimestampTZ,
    TextColumn,
    TimestampTZ,
)

if TYPE_CHECKING:
    from blockserved.db.models.batches import BatchUpload


class ServedNotice(Base):
    """One row per (recipient, case) pair within a batch.

    Written with INSERT ... ON CONFLICT (notice_id) DO UPDATE, so a resubmitted
    notice overwrites its previous row instead of duplicating it.
    """

    __tablename__ = "served_notices"

    id: Mapped[BigIntPrimaryKey]

    notice_id: Mapped[TextColumn] = mapped_column(unique=True)

    server_address: Mapped[TextColumn]
    recipient_address: Mapped[TextColumn]
    notice_type: Mapped[TextColumn]
    case_number: Mapped[str] = mapped_column(Text, nullable=False, default="")

    alert_id: Mapped[TextColumn]
    document_id: Mapped[TextColumn]

    issuing_agency: Mapped[str] = mapped_column(Text, nullable=False, default="")
    has_document: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ipfs_hash: Mapped[OptionalText]

    batch_id: Mapped[str | None] = mapped_column(
        Text,
        ForeignKey("batch_uploads.batch_id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    batch: Mapped[BatchUpload | None] = relationship(
        "BatchUpload",
        back_populates="notices",
    )

    __table_args__ = (
        Index("ix_served_notices_server_address", "server_address"),
        Index("ix_served_notices_recipient_address", "recipient_address"),
        Index("ix_served_notices_case_number", "case_number"),
        Index("ix_served_notices_batch_id", "batch_id"),
    )


class NoticeComponent(Base):
    """Document references for a notice, one row per chain.

    The batch workflow only writes references (object store keys, IPFS hash,
    encryption key); document bytes live in the object store.
    """

    __tablename__ = "notice_components"

    id: Mapped[BigIntPrimaryKey]

    notice_id: Mapped[TextColumn]
    chain_type: Mapped[str] = mapped_column(Text, nullable=False, default="TRON")

    case_number: Mapped[str] = mapped_column(Text, nullable=False, default="")
    server_address: Mapped[TextColumn]
    recipient_address: Mapped[TextColumn]

    alert_id: Mapped[TextColumn]
    alert_thumbnail_key: Mapped[OptionalText]

    document_id: Mapped[TextColumn]
    document_key: Mapped[OptionalText]
    document_ipfs_hash: Mapped[OptionalText]
    document_encryption_key: Mapped[OptionalText]

    notice_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    issuing_agency: Mapped[str | None] = mapped_column(Text, nullable=True)

    served_at: Mapped[OptionalTimestampTZ]
    updated_at: Mapped[TimestampTZ]

    __table_args__ = (
        UniqueConstraint("notice_id", "chain_type", name="uq_notice_components_notice_chain"),
        Index("ix_notice_components_recipient_address", "recipient_address"),
    )
