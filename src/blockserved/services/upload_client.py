"""HTTP client for submitting batches to the ingestion endpoint.

The client posts one multipart request per batch (metadata fields plus at
most a thumbnail and a document) and retries on non-2xx responses and
transport errors with linear backoff: attempt * backoff_step seconds.

A 2xx response whose failureCount is non-zero means the server accepted and
partially processed the batch. It is returned as-is and never resubmitted;
resubmitting would serve the successful recipients again.

Example:
    config = UploadClientConfig.from_env()
    async with BatchUploadClient(config) as client:
        result = await client.upload_batch_documents(
            BatchUploadRequest(
                server_address="TJRabPrwbZy45sbavfcjinPJC18kjpRTv8",
                recipients=["TLsV52sRDL79HXGGm9yzwKibb6BeruhUzy"],
                case_number="34-2501-001",
            )
        )
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from blockserved.services.attachments import Attachment
from blockserved.services.ids import generate_batch_id

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 60.0
DEFAULT_BACKOFF_STEP = 2.0
DEFAULT_MAX_RETRIES = 3

BATCH_DOCUMENTS_PATH = "/api/batch/documents"


@dataclass(frozen=True)
class UploadClientConfig:
    """Configuration for the batch upload client."""

    base_url: str = DEFAULT_API_URL
    timeout: float = DEFAULT_TIMEOUT
    backoff_step: float = DEFAULT_BACKOFF_STEP
    max_retries: int = DEFAULT_MAX_RETRIES

    @classmethod
    def from_env(cls) -> UploadClientConfig:
        """Create config from environment variables."""
        return cls(
            base_url=os.environ.get("BLOCKSERVED_API_URL", DEFAULT_API_URL),
            timeout=float(os.environ.get("BLOCKSERVED_CLIENT_TIMEOUT", DEFAULT_TIMEOUT)),
            backoff_step=float(
                os.environ.get("BLOCKSERVED_CLIENT_BACKOFF_STEP", DEFAULT_BACKOFF_STEP)
            ),
        )


@dataclass
class BatchUploadRequest:
    """A batch as assembled on the client side."""

    server_address: str
    recipients: list[str]
    case_number: str = ""
    notice_type: str = "Legal Notice"
    issuing_agency: str = ""
    batch_id: str | None = None
    ipfs_hash: str | None = None
    encryption_key: str | None = None
    alert_ids: list[int] | None = None
    document_ids: list[int] | None = None
    attachments: list[Attachment] = field(default_factory=list)

    def form_fields(self) -> dict[str, str]:
        """Multipart metadata fields; lists are sent as JSON arrays."""
        fields = {
            "recipients": json.dumps(self.recipients),
            "serverAddress": self.server_address,
            "caseNumber": self.case_number,
            "noticeType": self.notice_type,
            "issuingAgency": self.issuing_agency,
        }
        if self.batch_id:
            fields["batchId"] = self.batch_id
        if self.ipfs_hash:
            fields["ipfsHash"] = self.ipfs_hash
        if self.encryption_key:
            fields["encryptionKey"] = self.encryption_key
        if self.alert_ids is not None:
            fields["alertIds"] = json.dumps(self.alert_ids)
        if self.document_ids is not None:
            fields["documentIds"] = json.dumps(self.document_ids)
        return fields

    def files(self) -> list[tuple[str, tuple[str, bytes, str]]]:
        return [
            (
                attachment.field.value,
                (
                    attachment.filename or f"{attachment.field.value}{attachment.extension}",
                    attachment.data,
                    attachment.content_type,
                ),
            )
            for attachment in self.attachments
        ]


@dataclass(frozen=True)
class BatchResult:
    """Server response to an accepted batch.

    Attributes:
        success: Server-reported success flag.
        batch_id: The batch identifier.
        status: Aggregate status (success, partial, failed).
        success_count: Recipients served.
        failure_count: Recipients that failed.
        results: Per-recipient results as returned by the server.
        attempts: Requests made, including the successful one.
    """

    success: bool
    batch_id: str
    status: str
    success_count: int
    failure_count: int
    results: list[dict[str, Any]]
    attempts: int

    @classmethod
    def from_response(cls, body: dict[str, Any], *, batch_id: str, attempts: int) -> BatchResult:
        return cls(
            success=bool(body.get("success", False)),
            batch_id=body.get("batchId") or batch_id,
            status=body.get("status", ""),
            success_count=int(body.get("successCount", 0)),
            failure_count=int(body.get("failureCount", 0)),
            results=list(body.get("results", [])),
            attempts=attempts,
        )


class BatchUploadError(Exception):
    """Raised when a batch could not be delivered to the server.

    Attributes:
        message: Human-readable error description.
        batch_id: The batch that was being uploaded.
        attempts: Requests made before giving up.
        status_code: HTTP status of the last response, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        batch_id: str,
        attempts: int,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.batch_id = batch_id
        self.attempts = attempts
        self.status_code = status_code
        super().__init__(message)


class BatchUploadClient:
    """Async client for the batch ingestion API.

    Must be used as an async context manager.
    """

    def __init__(self, config: UploadClientConfig | None = None) -> None:
        self._config = config or UploadClientConfig()
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> BatchUploadClient:
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "BatchUploadClient must be used as async context manager"
            raise RuntimeError(msg)
        return self._client

    async def upload_batch_documents(
        self,
        batch: BatchUploadRequest,
        max_retries: int | None = None,
    ) -> BatchResult:
        """Upload a batch, retrying failed requests.

        A batch without batch_id gets one before the first attempt; every
        retry carries the same ID so the server upserts instead of
        duplicating the batch.

        Args:
            batch: The batch to upload.
            max_retries: Total attempts (defaults to the configured value).

        Returns:
            BatchResult from the first 2xx response.

        Raises:
            ValueError: If the batch has no recipients or max_retries < 1.
            BatchUploadError: If every attempt failed.
        """
        attempts_allowed = self._config.max_retries if max_retries is None else max_retries
        if attempts_allowed < 1:
            msg = f"max_retries must be at least 1, got {attempts_allowed}"
            raise ValueError(msg)
        if not batch.recipients:
            msg = "Batch has no recipients"
            raise ValueError(msg)

        if not batch.batch_id:
            batch.batch_id = generate_batch_id()
        batch_id = batch.batch_id

        client = self._get_client()
        last_error = ""
        last_status: int | None = None

        for attempt in range(1, attempts_allowed + 1):
            try:
                response = await client.post(
                    BATCH_DOCUMENTS_PATH,
                    data=batch.form_fields(),
                    files=batch.files() or None,
                )
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                last_status = None
            else:
                if response.is_success:
                    return self._accept(response, batch_id=batch_id, attempts=attempt)
                last_status = response.status_code
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"

            if attempt < attempts_allowed:
                delay = attempt * self._config.backoff_step
                logger.warning(
                    "Batch upload attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt,
                    attempts_allowed,
                    last_error,
                    delay,
                    extra={"batch_id": batch_id},
                )
                await asyncio.sleep(delay)

        logger.error(
            "Batch upload failed after %d attempts: %s",
            attempts_allowed,
            last_error,
            extra={"batch_id": batch_id},
        )
        raise BatchUploadError(
            f"Batch upload failed after {attempts_allowed} attempts: {last_error}",
            batch_id=batch_id,
            attempts=attempts_allowed,
            status_code=last_status,
        )

    def _accept(self, response: httpx.Response, *, batch_id: str, attempts: int) -> BatchResult:
        try:
            body = response.json()
        except ValueError as e:
            raise BatchUploadError(
                "Server accepted the batch but returned an unreadable body",
                batch_id=batch_id,
                attempts=attempts,
                status_code=response.status_code,
            ) from e

        result = BatchResult.from_response(body, batch_id=batch_id, attempts=attempts)
        if result.failure_count > 0:
            logger.warning(
                "Batch %s partially processed: %d of %d recipients failed",
                result.batch_id,
                result.failure_count,
                result.failure_count + result.success_count,
            )
        else:
            logger.info(
                "Batch %s uploaded in %d attempt(s)",
                result.batch_id,
                attempts,
            )
        return result

    async def check_batch_status(self, batch_id: str) -> dict[str, Any] | None:
        """Fetch a batch's stored status.

        Returns:
            The status body, or None if the batch is unknown or the request
            failed.
        """
        client = self._get_client()
        try:
            response = await client.get(f"/api/batch/{batch_id}/status")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch status for batch %s: %s", batch_id, e)
            return None
