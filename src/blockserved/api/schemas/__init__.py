"""Pydantic schemas for BlockServed API request/response models."""

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

__all__ = [
    "BatchDocumentsResponse",
    "BatchFiles",
    "BatchItemInfo",
    "BatchStatusResponse",
    "BatchSummary",
    "BatchUploadInfo",
    "HealthResponse",
    "ProbeResponse",
    "RecipientResult",
    "ValidationResponse",
]
