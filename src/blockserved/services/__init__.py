"""BlockServed service layer.

Business logic behind the batch API and the upload client:
- IdGenerator: safe 32-bit notice IDs, text IDs and external ID mapping
- validate_batch: normalisation of heterogeneous batch input
- DocumentStore: S3-compatible storage for thumbnails and documents
- BatchIngestionService: single-transaction batch writes
- BatchUploadClient: multipart upload with linear-backoff retry
- run_schema_probe: scripted schema diagnostics
"""

from blockserved.services.batch_ingestion import (
    BatchIngestionError,
    BatchIngestionService,
    IngestionResult,
    ItemResult,
)
from blockserved.services.ids import IdGenerator, get_id_generator
from blockserved.services.storage import DocumentStore, StorageError
from blockserved.services.upload_client import (
    BatchResult,
    BatchUploadClient,
    BatchUploadError,
    BatchUploadRequest,
    UploadClientConfig,
)
from blockserved.services.validation import (
    BatchValidationResult,
    NormalizedBatch,
    validate_batch,
)

__all__ = [
    "BatchIngestionError",
    "BatchIngestionService",
    "BatchResult",
    "BatchUploadClient",
    "BatchUploadError",
    "BatchUploadRequest",
    "BatchValidationResult",
    "DocumentStore",
    "IdGenerator",
    "IngestionResult",
    "ItemResult",
    "NormalizedBatch",
    "StorageError",
    "UploadClientConfig",
    "get_id_generator",
    "validate_batch",
]
