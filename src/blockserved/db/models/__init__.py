"""SQLAlchemy ORM models for BlockServed.

This package contains all database models organized by domain:
- base: Common metadata, column annotations, and enums
- batches: Submitted batches and per-recipient batch items
- notices: Served notices and their document components
"""

from blockserved.db.models.base import Base, BatchItemStatus, BatchStatus, metadata
from blockserved.db.models.batches import BatchUpload, NoticeBatchItem
from blockserved.db.models.notices import NoticeComponent, ServedNotice

__all__ = [
    "Base",
    "BatchItemStatus",
    "BatchStatus",
    "BatchUpload",
    "NoticeBatchItem",
    "NoticeComponent",
    "ServedNotice",
    "metadata",
]
