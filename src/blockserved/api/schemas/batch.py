"""Pydantic schemas for the batch API.

Responses use camelCase field names on the wire, which is what the browser
client and the upload client read.
"""

from __future__ import annotations

# NOTE: datetime must remain at runtime for Pydantic validation
from datetime import datetime  # noqa: TC003
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for response models serialised with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Batch submission
# -----------------------------------------------------------------------------


class RecipientResult(CamelModel):
    """Outcome for one recipient of a batch."""

    recipient: str = Field(..., description="Recipient TRON address")
    notice_id: str = Field(..., description="Notice identifier")
    alert_id: str = Field(..., description="Alert NFT identifier (equals noticeId)")
    document_id: str = Field(..., description="Document NFT identifier (alertId + 1)")
    status: str = Field(..., description="Item status (success or failed)")
    error: str | None = Field(None, description="Failure reason for failed items")


class BatchFiles(CamelModel):
    """Staged object keys of the batch attachments."""

    thumbnail: str | None = Field(None, description="Staged thumbnail key")
    document: str | None = Field(None, description="Staged document key")


class BatchDocumentsResponse(CamelModel):
    """Response for POST /batch/documents."""

    success: bool = Field(..., description="False only when no recipient was served")
    batch_id: str = Field(..., description="Batch identifier")
    status: str = Field(..., description="Aggregate status (success, partial, failed)")
    total_recipients: int = Field(..., ge=0)
    success_count: int = Field(..., ge=0)
    failure_count: int = Field(..., ge=0)
    results: list[RecipientResult] = Field(default_factory=list)
    files: BatchFiles = Field(default_factory=BatchFiles)
    warnings: list[str] = Field(default_factory=list, description="Validation warnings")


# -----------------------------------------------------------------------------
# Batch status
# -----------------------------------------------------------------------------


class BatchUploadInfo(CamelModel):
    """A stored batch_uploads row."""

    batch_id: str
    server_address: str
    recipient_count: int
    status: str
    metadata: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class BatchItemInfo(CamelModel):
    """A stored notice_batch_items row."""

    notice_id: str
    recipient_address: str
    status: str
    error_message: str | None = None
    created_at: datetime


class BatchSummary(CamelModel):
    total: int
    success: int
    failed: int


class BatchStatusResponse(CamelModel):
    """Response for GET /batch/{batch_id}/status."""

    success: bool = True
    batch: BatchUploadInfo
    items: list[BatchItemInfo] = Field(default_factory=list)
    summary: BatchSummary


# -----------------------------------------------------------------------------
# Diagnostics
# -----------------------------------------------------------------------------


class ValidationResponse(CamelModel):
    """Response for POST /batch/validate."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    data: dict[str, Any] | None = Field(None, description="Normalised batch when valid")


class ProbeResponse(CamelModel):
    """Response for POST /batch/debug."""

    success: bool
    steps: list[dict[str, Any]] = Field(default_factory=list)
    failed_at: str | None = None
    error: dict[str, Any] | None = Field(None, description="PostgreSQL diagnostics")


class HealthResponse(CamelModel):
    """Response for GET /batch/health."""

    status: str
    database: str
    storage: str
    timestamp: datetime
