"""Batch ingestion: one database transaction per submitted batch.

For each batch this service:
- Upserts the batch_uploads row with status 'processing'
- Serves every recipient: picks the notice ID, copies staged attachments to
  per-notice keys, upserts served_notices and notice_components, and records
  a notice_batch_items row
- Sets the aggregate status (success, partial or failed) and commits

A database error aborts the whole batch: the transaction is rolled back, so
no row written for the batch survives, and staged objects are removed. Only
a per-item storage failure (copying attachments for one notice) marks an item
'failed' while the rest of the batch proceeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from blockserved.db.errors import PgDiagnostics
from blockserved.db.models import (
    BatchItemStatus,
    BatchStatus,
    BatchUpload,
    NoticeBatchItem,
    NoticeComponent,
    ServedNotice,
)
from blockserved.services.attachments import AttachmentField
from blockserved.services.ids import derive_notice_ids
from blockserved.services.storage import StorageError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from blockserved.services.attachments import Attachment
    from blockserved.services.ids import IdGenerator
    from blockserved.services.storage import DocumentStore
    from blockserved.services.validation import NormalizedBatch

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_TYPE = "TRON"


@dataclass(frozen=True, slots=True)
class ItemResult:
    """Outcome for one recipient.

    Attributes:
        recipient: Recipient TRON address.
        notice_id: Notice ID (also the alert ID).
        alert_id: Alert NFT ID.
        document_id: Document NFT ID (alert_id + 1).
        status: Item outcome.
        error: Failure reason for failed items.
    """

    recipient: str
    notice_id: str
    alert_id: str
    document_id: str
    status: BatchItemStatus
    error: str | None = None


@dataclass(frozen=True, slots=True)
class IngestionResult:
    """Outcome of a committed batch.

    Attributes:
        batch_id: The batch identifier.
        status: Aggregate batch status.
        items: Per-recipient outcomes in submission order.
        files: Staged object key per attachment field (None when absent).
    """

    batch_id: str
    status: BatchStatus
    items: list[ItemResult]
    files: dict[str, str | None]

    @property
    def total_recipients(self) -> int:
        return len(self.items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.status is BatchItemStatus.SUCCESS)

    @property
    def failure_count(self) -> int:
        return self.total_recipients - self.success_count

    @property
    def failed_recipients(self) -> list[str]:
        return [item.recipient for item in self.items if item.status is BatchItemStatus.FAILED]


@dataclass(frozen=True, slots=True)
class BatchStatusReport:
    """A stored batch with its items, as returned by the status endpoint."""

    batch: BatchUpload
    items: list[NoticeBatchItem] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        success = sum(1 for item in self.items if item.status is BatchItemStatus.SUCCESS)
        return {
            "total": len(self.items),
            "success": success,
            "failed": len(self.items) - success,
        }


class BatchIngestionError(Exception):
    """Raised when a batch could not be written.

    Attributes:
        message: Human-readable error description.
        batch_id: The batch that failed.
        diagnostics: PostgreSQL diagnostics when a database error caused it.
    """

    def __init__(
        self,
        message: str,
        *,
        batch_id: str,
        diagnostics: PgDiagnostics | None = None,
    ) -> None:
        self.message = message
        self.batch_id = batch_id
        self.diagnostics = diagnostics
        super().__init__(message)


def aggregate_status(items: Sequence[ItemResult]) -> BatchStatus:
    """Aggregate item outcomes: all succeeded, some succeeded, or none."""
    succeeded = sum(1 for item in items if item.status is BatchItemStatus.SUCCESS)
    if items and succeeded == len(items):
        return BatchStatus.SUCCESS
    if succeeded:
        return BatchStatus.PARTIAL
    return BatchStatus.FAILED


class BatchIngestionService:
    """Writes a validated batch to the database.

    The session must not be inside a transaction the caller wants to keep:
    ingest commits on success and rolls back on database errors.
    """

    def __init__(
        self,
        session: AsyncSession,
        id_generator: IdGenerator,
        document_store: DocumentStore | None = None,
        *,
        chain_type: str = DEFAULT_CHAIN_TYPE,
    ) -> None:
        self._session = session
        self._ids = id_generator
        self._store = document_store
        self._chain_type = chain_type

    async def ingest(
        self,
        batch: NormalizedBatch,
        attachments: Sequence[Attachment] = (),
    ) -> IngestionResult:
        """Ingest a batch in a single transaction.

        Args:
            batch: Validated batch.
            attachments: Already checked attachments (at most one per field).

        Returns:
            IngestionResult with per-recipient outcomes.

        Raises:
            BatchIngestionError: If attachments cannot be staged or the
                transaction fails. Nothing from the batch is persisted.
        """
        staged = self._stage(batch.batch_id, attachments)
        attached_keys: list[str] = []

        logger.info(
            "Ingesting batch",
            extra={
                "batch_id": batch.batch_id,
                "recipient_count": len(batch.recipients),
                "attachments": [f.value for f in staged],
            },
        )

        metadata = self._batch_metadata(batch, staged)
        items: list[ItemResult] = []
        try:
            await self._upsert_batch(batch, metadata)

            # Client IDs are reserved up front so generated IDs never collide
            used_ids = {alert_id for alert_id in batch.alert_ids if alert_id is not None}
            served_ids: set[int] = set()
            for index, recipient in enumerate(batch.recipients):
                item = await self._serve_recipient(
                    batch, index, recipient, staged, used_ids, served_ids, attached_keys
                )
                items.append(item)

            status = aggregate_status(items)
            await self._complete_batch(batch.batch_id, status, metadata, items)
            await self._session.commit()

        except SQLAlchemyError as e:
            await self._session.rollback()
            diagnostics = PgDiagnostics.from_exception(e)
            logger.error(
                "Batch transaction rolled back: %s",
                diagnostics.message,
                extra={
                    "batch_id": batch.batch_id,
                    "processed_items": len(items),
                    "pg_diagnostics": diagnostics.as_dict(),
                },
            )
            self._discard([*attached_keys, *staged.values()])
            raise BatchIngestionError(
                "Database error while ingesting batch",
                batch_id=batch.batch_id,
                diagnostics=diagnostics,
            ) from e

        except Exception as e:
            await self._session.rollback()
            logger.warning(
                "Batch ingestion aborted by %s; discarding stored objects",
                type(e).__name__,
                extra={"batch_id": batch.batch_id, "processed_items": len(items)},
            )
            self._discard([*attached_keys, *staged.values()])
            raise

        result = IngestionResult(
            batch_id=batch.batch_id,
            status=status,
            items=items,
            files={f.value: staged.get(f) for f in AttachmentField},
        )
        logger.info(
            "Batch committed",
            extra={
                "batch_id": batch.batch_id,
                "status": status.value,
                "success_count": result.success_count,
                "failure_count": result.failure_count,
            },
        )
        return result

    async def get_status(self, batch_id: str) -> BatchStatusReport | None:
        """Load a batch and its items ordered by creation.

        Returns:
            BatchStatusReport, or None if the batch does not exist.
        """
        result = await self._session.execute(
            select(BatchUpload).where(BatchUpload.batch_id == batch_id)
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            return None

        items_result = await self._session.execute(
            select(NoticeBatchItem)
            .where(NoticeBatchItem.batch_id == batch_id)
            .order_by(NoticeBatchItem.created_at, NoticeBatchItem.id)
        )
        return BatchStatusReport(batch=batch, items=list(items_result.scalars().all()))

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _discard(self, keys: Sequence[str]) -> None:
        if self._store is not None and keys:
            self._store.discard(keys)

    def _stage(
        self,
        batch_id: str,
        attachments: Sequence[Attachment],
    ) -> dict[AttachmentField, str]:
        if not attachments:
            return {}
        if self._store is None:
            raise BatchIngestionError(
                "Attachments supplied but no document store is configured",
                batch_id=batch_id,
            )
        try:
            return self._store.stage_attachments(batch_id, attachments)
        except StorageError as e:
            logger.error(
                "Failed to stage attachments: %s",
                e.message,
                extra={"batch_id": batch_id, "key": e.key},
            )
            raise BatchIngestionError(
                "Failed to store batch attachments",
                batch_id=batch_id,
            ) from e

    @staticmethod
    def _batch_metadata(
        batch: NormalizedBatch,
        staged: Mapping[AttachmentField, str],
    ) -> dict[str, Any]:
        return {
            "caseNumber": batch.case_number,
            "noticeType": batch.notice_type,
            "issuingAgency": batch.issuing_agency,
            "ipfsHash": batch.ipfs_hash,
            "thumbnailKey": staged.get(AttachmentField.THUMBNAIL),
            "documentKey": staged.get(AttachmentField.DOCUMENT),
            "recipientCount": len(batch.recipients),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def _upsert_batch(self, batch: NormalizedBatch, metadata: dict[str, Any]) -> None:
        table = BatchUpload.__table__
        stmt = pg_insert(table).values(
            batch_id=batch.batch_id,
            server_address=batch.server_address,
            recipient_count=len(batch.recipients),
            status=BatchStatus.PROCESSING,
            metadata=metadata,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.batch_id],
            set_={
                "server_address": stmt.excluded.server_address,
                "recipient_count": stmt.excluded.recipient_count,
                "status": stmt.excluded.status,
                "metadata": stmt.excluded["metadata"],
                "updated_at": func.now(),
            },
        )
        await self._session.execute(stmt)

    async def _serve_recipient(
        self,
        batch: NormalizedBatch,
        index: int,
        recipient: str,
        staged: Mapping[AttachmentField, str],
        used_ids: set[int],
        served_ids: set[int],
        attached_keys: list[str],
    ) -> ItemResult:
        notice_id = batch.alert_id_for(index)
        if notice_id is not None and notice_id in served_ids:
            logger.warning(
                "Alert ID %s already served in this batch; generating a new one",
                notice_id,
                extra={"batch_id": batch.batch_id, "recipient": recipient},
            )
            notice_id = None
        if notice_id is None:
            notice_id = self._ids.generate_safe_integer_id(avoid=used_ids)
        used_ids.add(notice_id)
        served_ids.add(notice_id)
        alert_id, document_id = derive_notice_ids(notice_id)

        keys: dict[AttachmentField, str] = {}
        if staged and self._store is not None:
            try:
                keys = self._store.attach_to_notice(notice_id, staged)
            except StorageError as e:
                logger.warning(
                    "Failed to store documents for notice %s: %s",
                    notice_id,
                    e.message,
                    extra={"batch_id": batch.batch_id, "recipient": recipient},
                )
                await self._insert_item(
                    batch.batch_id, notice_id, recipient, BatchItemStatus.FAILED, e.message
                )
                return ItemResult(
                    recipient=recipient,
                    notice_id=str(notice_id),
                    alert_id=str(alert_id),
                    document_id=str(document_id),
                    status=BatchItemStatus.FAILED,
                    error=e.message,
                )
            attached_keys.extend(keys.values())

        await self._upsert_notice(batch, notice_id, recipient, keys)
        if keys or batch.ipfs_hash is not None:
            await self._upsert_component(batch, notice_id, recipient, keys)
        await self._insert_item(batch.batch_id, notice_id, recipient, BatchItemStatus.SUCCESS)

        return ItemResult(
            recipient=recipient,
            notice_id=str(notice_id),
            alert_id=str(alert_id),
            document_id=str(document_id),
            status=BatchItemStatus.SUCCESS,
        )

    async def _upsert_notice(
        self,
        batch: NormalizedBatch,
        notice_id: int,
        recipient: str,
        keys: Mapping[AttachmentField, str],
    ) -> None:
        alert_id, document_id = derive_notice_ids(notice_id)
        table = ServedNotice.__table__
        values = {
            "notice_id": str(notice_id),
            "server_address": batch.server_address,
            "recipient_address": recipient,
            "notice_type": batch.notice_type,
            "case_number": batch.case_number,
            "alert_id": str(alert_id),
            "document_id": str(document_id),
            "issuing_agency": batch.issuing_agency,
            "has_document": AttachmentField.DOCUMENT in keys or batch.ipfs_hash is not None,
            "ipfs_hash": batch.ipfs_hash,
            "batch_id": batch.batch_id,
        }
        stmt = pg_insert(table).values(**values)
        # Last writer wins on every non-key field
        update_set: dict[str, Any] = {
            name: stmt.excluded[name] for name in values if name != "notice_id"
        }
        update_set["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=[table.c.notice_id], set_=update_set)
        await self._session.execute(stmt)

    async def _upsert_component(
        self,
        batch: NormalizedBatch,
        notice_id: int,
        recipient: str,
        keys: Mapping[AttachmentField, str],
    ) -> None:
        alert_id, document_id = derive_notice_ids(notice_id)
        table = NoticeComponent.__table__
        stmt = pg_insert(table).values(
            notice_id=str(notice_id),
            chain_type=self._chain_type,
            case_number=batch.case_number,
            server_address=batch.server_address,
            recipient_address=recipient,
            alert_id=str(alert_id),
            alert_thumbnail_key=keys.get(AttachmentField.THUMBNAIL),
            document_id=str(document_id),
            document_key=keys.get(AttachmentField.DOCUMENT),
            document_ipfs_hash=batch.ipfs_hash,
            document_encryption_key=batch.encryption_key,
            notice_type=batch.notice_type,
            issuing_agency=batch.issuing_agency,
            served_at=func.now(),
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.notice_id, table.c.chain_type],
            set_={
                "case_number": excluded.case_number,
                "server_address": excluded.server_address,
                "recipient_address": excluded.recipient_address,
                "alert_id": excluded.alert_id,
                "document_id": excluded.document_id,
                "notice_type": excluded.notice_type,
                "issuing_agency": excluded.issuing_agency,
                # A resubmission without files keeps the stored references
                "alert_thumbnail_key": func.coalesce(
                    excluded.alert_thumbnail_key, table.c.alert_thumbnail_key
                ),
                "document_key": func.coalesce(excluded.document_key, table.c.document_key),
                "document_ipfs_hash": func.coalesce(
                    excluded.document_ipfs_hash, table.c.document_ipfs_hash
                ),
                "document_encryption_key": func.coalesce(
                    excluded.document_encryption_key, table.c.document_encryption_key
                ),
                "served_at": func.coalesce(table.c.served_at, excluded.served_at),
                "updated_at": func.now(),
            },
        )
        await self._session.execute(stmt)

    async def _insert_item(
        self,
        batch_id: str,
        notice_id: int,
        recipient: str,
        status: BatchItemStatus,
        error_message: str | None = None,
    ) -> None:
        table = NoticeBatchItem.__table__
        stmt = (
            pg_insert(table)
            .values(
                batch_id=batch_id,
                notice_id=str(notice_id),
                recipient_address=recipient,
                status=status,
                error_message=error_message,
            )
            .on_conflict_do_nothing(index_elements=[table.c.batch_id, table.c.notice_id])
        )
        await self._session.execute(stmt)

    async def _complete_batch(
        self,
        batch_id: str,
        status: BatchStatus,
        metadata: dict[str, Any],
        items: Sequence[ItemResult],
    ) -> None:
        success_count = sum(1 for item in items if item.status is BatchItemStatus.SUCCESS)
        completed = {
            **metadata,
            "completedAt": datetime.now(UTC).isoformat(),
            "successCount": success_count,
            "failureCount": len(items) - success_count,
            "failedRecipients": [
                item.recipient for item in items if item.status is BatchItemStatus.FAILED
            ],
        }
        table = BatchUpload.__table__
        stmt = (
            table.update()
            .where(table.c.batch_id == batch_id)
            .values(status=status, metadata=completed, updated_at=func.now())
        )
        await self._session.execute(stmt)
