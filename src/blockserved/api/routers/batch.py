"""Batch API router.

Endpoints for submitting notice batches and inspecting them:
- POST /batch/documents: validate, stage attachments and ingest a batch
- GET /batch/{batch_id}/status: stored batch with its items
- POST /batch/validate: dry-run of the validator (no database access)
- POST /batch/debug: scripted schema probe, always rolled back
- GET /batch/health: database connectivity and bucket reachability
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, File, Form, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from blockserved.api.middleware.errors import (
    BatchFailedError,
    NotFoundError,
    ValidationAPIError,
)
from blockserved.api.schemas.batch import (
    BatchDocumentsResponse,
    BatchFiles,
    BatchItemInfo,
    BatchStatusResponse,
    BatchSummary,
    BatchUploadInfo,
    HealthResponse,
    ProbeResponse,
    RecipientResult,
    ValidationResponse,
)

# NOTE: Settings, IdGenerator and DocumentStore needed at runtime for dependency injection
from blockserved.core.config import Settings  # noqa: TC001
from blockserved.db.models.base import BatchStatus
from blockserved.services.attachments import (
    Attachment,
    AttachmentField,
    AttachmentRejectedError,
    check_attachment,
)
from blockserved.services.batch_ingestion import BatchIngestionError, BatchIngestionService
from blockserved.services.diagnostics import check_database, run_schema_probe
from blockserved.services.ids import IdGenerator  # noqa: TC001
from blockserved.services.storage import DocumentStore, StorageError  # noqa: TC001
from blockserved.services.validation import validate_batch

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/batch",
    tags=["batch"],
    responses={
        400: {"description": "Batch or attachment validation failed"},
        500: {"description": "Batch could not be written"},
    },
)


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------


async def get_db_session() -> AsyncSession:
    """Get database session.

    Uses the application's async session factory.
    """
    from blockserved.db import get_async_session

    async with get_async_session() as session:
        yield session


def get_app_settings(request: Request) -> Settings:
    """Settings passed to create_app, or the environment settings."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        from blockserved.core.settings import get_settings

        settings = get_settings()
    return settings


def get_document_store(request: Request) -> DocumentStore:
    """Get the document store, created once per application.

    The bucket is created on first use. A storage outage here is logged
    and left to surface on the first upload.
    """
    store = getattr(request.app.state, "document_store", None)
    if store is None:
        store = DocumentStore.from_settings(get_app_settings(request).s3)
        try:
            store.ensure_bucket()
        except StorageError as e:
            logger.warning(
                "Could not ensure bucket %s: %s",
                store.bucket,
                e.message,
                extra={"operation": e.operation},
            )
        request.app.state.document_store = store
    return store


def get_id_generator() -> IdGenerator:
    from blockserved.services.ids import get_id_generator as _get_id_generator

    return _get_id_generator()


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Store = Annotated[DocumentStore, Depends(get_document_store)]
Ids = Annotated[IdGenerator, Depends(get_id_generator)]


# -----------------------------------------------------------------------------
# Batch submission
# -----------------------------------------------------------------------------


async def _read_attachment(
    field: AttachmentField,
    upload: UploadFile,
    settings: Settings,
) -> Attachment:
    # One byte past the limit is enough to detect an oversized file
    data = await upload.read(settings.batch.max_upload_bytes + 1)
    attachment = Attachment(
        field=field,
        filename=upload.filename or "",
        content_type=upload.content_type or "",
        data=data,
    )
    try:
        check_attachment(
            attachment,
            max_bytes=settings.batch.max_upload_bytes,
            allowed_content_types=settings.batch.allowed_content_types,
        )
    except AttachmentRejectedError as e:
        raise ValidationAPIError(e.message, detail={"field": e.field.value}) from e
    return attachment


@router.post(
    "/documents",
    response_model=BatchDocumentsResponse,
    summary="Submit a batch of notices",
    description=(
        "Validates the batch, stages the optional thumbnail and document, then serves "
        "every recipient inside one database transaction."
    ),
)
async def upload_batch_documents(
    response: Response,
    db: DbSession,
    store: Store,
    ids: Ids,
    settings: AppSettings,
    batch_id: Annotated[str | None, Form(alias="batchId")] = None,
    recipients: Annotated[str | None, Form()] = None,
    case_number: Annotated[str | None, Form(alias="caseNumber")] = None,
    server_address: Annotated[str | None, Form(alias="serverAddress")] = None,
    notice_type: Annotated[str | None, Form(alias="noticeType")] = None,
    issuing_agency: Annotated[str | None, Form(alias="issuingAgency")] = None,
    ipfs_hash: Annotated[str | None, Form(alias="ipfsHash")] = None,
    encryption_key: Annotated[str | None, Form(alias="encryptionKey")] = None,
    alert_ids: Annotated[str | None, Form(alias="alertIds")] = None,
    document_ids: Annotated[str | None, Form(alias="documentIds")] = None,
    thumbnail: Annotated[UploadFile | None, File(description="Alert thumbnail")] = None,
    document: Annotated[UploadFile | None, File(description="Full legal document")] = None,
) -> BatchDocumentsResponse:
    """Submit a batch of notices.

    Returns 200 when at least one recipient was served (status success or
    partial) and 500 when none was.

    Raises:
        ValidationAPIError: If the batch or an attachment is invalid.
        BatchFailedError: If the transaction failed; nothing was persisted.
    """
    validation = validate_batch(
        {
            "batchId": batch_id,
            "recipients": recipients,
            "caseNumber": case_number,
            "serverAddress": server_address,
            "noticeType": notice_type,
            "issuingAgency": issuing_agency,
            "ipfsHash": ipfs_hash,
            "encryptionKey": encryption_key,
            "alertIds": alert_ids,
            "documentIds": document_ids,
        },
        id_generator=ids,
        default_notice_type=settings.batch.default_notice_type,
    )
    if not validation.valid or validation.data is None:
        raise ValidationAPIError(
            "Batch validation failed",
            detail={"errors": validation.errors, "warnings": validation.warnings},
        )
    batch = validation.data

    attachments = [
        await _read_attachment(field, upload, settings)
        for field, upload in (
            (AttachmentField.THUMBNAIL, thumbnail),
            (AttachmentField.DOCUMENT, document),
        )
        if upload is not None
    ]

    service = BatchIngestionService(db, ids, store, chain_type=settings.batch.chain_type)
    try:
        outcome = await service.ingest(batch, attachments)
    except BatchIngestionError as e:
        raise BatchFailedError(e.batch_id) from e

    if outcome.status is BatchStatus.FAILED:
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return BatchDocumentsResponse(
        success=outcome.status is not BatchStatus.FAILED,
        batch_id=outcome.batch_id,
        status=outcome.status.value,
        total_recipients=outcome.total_recipients,
        success_count=outcome.success_count,
        failure_count=outcome.failure_count,
        results=[
            RecipientResult(
                recipient=item.recipient,
                notice_id=item.notice_id,
                alert_id=item.alert_id,
                document_id=item.document_id,
                status=item.status.value,
                error=item.error,
            )
            for item in outcome.items
        ],
        files=BatchFiles(**outcome.files),
        warnings=validation.warnings,
    )


@router.get(
    "/{batch_id}/status",
    response_model=BatchStatusResponse,
    summary="Get batch status",
)
async def get_batch_status(batch_id: str, db: DbSession, ids: Ids) -> BatchStatusResponse:
    """Return a stored batch with its items ordered by creation time.

    Raises:
        NotFoundError: If the batch does not exist.
    """
    report = await BatchIngestionService(db, ids).get_status(batch_id)
    if report is None:
        raise NotFoundError("Batch", batch_id)

    batch = report.batch
    return BatchStatusResponse(
        batch=BatchUploadInfo(
            batch_id=batch.batch_id,
            server_address=batch.server_address,
            recipient_count=batch.recipient_count,
            status=batch.status.value,
            metadata=batch.batch_metadata,
            created_at=batch.created_at,
            updated_at=batch.updated_at,
        ),
        items=[
            BatchItemInfo(
                notice_id=item.notice_id,
                recipient_address=item.recipient_address,
                status=item.status.value,
                error_message=item.error_message,
                created_at=item.created_at,
            )
            for item in report.items
        ],
        summary=BatchSummary(**report.summary),
    )


# -----------------------------------------------------------------------------
# Diagnostics
# -----------------------------------------------------------------------------


@router.post(
    "/validate",
    response_model=ValidationResponse,
    summary="Validate a batch without storing it",
)
async def validate_batch_request(
    ids: Ids,
    settings: AppSettings,
    body: Annotated[dict[str, Any], Body()],
) -> ValidationResponse:
    """Run the batch validator on a JSON body."""
    result = validate_batch(
        body,
        id_generator=ids,
        default_notice_type=settings.batch.default_notice_type,
    )
    return ValidationResponse(**result.to_dict())


@router.post(
    "/debug",
    response_model=ProbeResponse,
    summary="Probe the batch schema",
    description="Runs test inserts against the batch tables and rolls them back.",
)
async def debug_batch_schema(response: Response, db: DbSession, ids: Ids) -> ProbeResponse:
    """Probe the schema; 500 with PostgreSQL diagnostics when a step fails."""
    report = await run_schema_probe(db, ids)
    if not report["success"]:
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return ProbeResponse(
        success=report["success"],
        steps=report["steps"],
        failed_at=report.get("failedAt"),
        error=report.get("error"),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Batch subsystem health",
    responses={503: {"description": "Database unreachable"}},
)
async def batch_health(db: DbSession, store: Store) -> HealthResponse | JSONResponse:
    """Check database connectivity with SELECT 1 and bucket reachability.

    The database is required for every batch, so an outage answers 503.
    Storage only holds attachments; an unreachable bucket reports 'degraded'.
    """
    now = datetime.now(UTC)
    storage = "connected"
    try:
        store.health_check()
    except StorageError as e:
        logger.warning("Batch storage check failed: %s", e.message)
        storage = "unavailable"

    try:
        await check_database(db)
    except SQLAlchemyError as e:
        logger.warning("Batch health check failed: %s", type(e).__name__)
        unhealthy = HealthResponse(
            status="unhealthy", database="disconnected", storage=storage, timestamp=now
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=unhealthy.model_dump(mode="json", by_alias=True),
        )
    return HealthResponse(
        status="healthy" if storage == "connected" else "degraded",
        database="connected",
        storage=storage,
        timestamp=now,
    )
