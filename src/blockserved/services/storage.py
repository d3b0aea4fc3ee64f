"""Object store integration for batch attachments.

Attachments are stored in an S3-compatible bucket in two places:
- Staged copies under batches/{batch_id}/, written before the ingestion
  transaction opens
- Per-notice copies under notices/{notice_id}/, written while each
  recipient is processed and referenced from notice_components

Every object carries its SHA-256 digest in metadata so operators can check
integrity against the IPFS copy.

Example:
    from blockserved.services.storage import DocumentStore
    from blockserved.core.settings import get_settings

    store = DocumentStore.from_settings(get_settings().s3)
    staged = store.stage_attachments("BATCH_1754866436198_a1b2c3", attachments)
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from blockserved.services.attachments import AttachmentField

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from mypy_boto3_s3 import S3Client

    from blockserved.core.config import S3Settings
    from blockserved.services.attachments import Attachment

logger = logging.getLogger(__name__)

STAGING_PREFIX = "batches"
NOTICE_PREFIX = "notices"


def staged_key(batch_id: str, attachment: Attachment) -> str:
    return f"{STAGING_PREFIX}/{batch_id}/{attachment.field.value}{attachment.extension}"


def notice_key(notice_id: int | str, staged: str) -> str:
    """Per-notice key for a staged object, keeping its file name."""
    return f"{NOTICE_PREFIX}/{notice_id}/{staged.rsplit('/', 1)[-1]}"


@dataclass(frozen=True)
class StoredObject:
    """Result of an upload.

    Attributes:
        key: The object key in the bucket.
        bucket: The bucket name.
        sha256_digest: SHA-256 hex digest of the uploaded content.
        size_bytes: Size of the uploaded content in bytes.
        etag: S3 ETag.
    """

    key: str
    bucket: str
    sha256_digest: str
    size_bytes: int
    etag: str


class StorageError(Exception):
    """Base exception for storage operations.

    Attributes:
        message: Human-readable error description.
        bucket: The bucket involved in the operation.
        key: The object key involved (if applicable).
        operation: The operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.bucket = bucket
        self.key = key
        self.operation = operation
        super().__init__(message)


class ObjectNotFoundError(StorageError):
    """Raised when an object does not exist."""


class BucketNotFoundError(StorageError):
    """Raised when the bucket does not exist."""


class DocumentStore:
    """S3-compatible store for notice thumbnails and documents.

    Bound to a single bucket. The client uses synchronous boto3; objects are
    small (at most the configured upload limit).
    """

    def __init__(
        self,
        endpoint_url: str | None,
        access_key: str,
        secret_key: str,
        bucket: str,
        region: str = "us-east-1",
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        """Initialize the document store.

        Args:
            endpoint_url: S3-compatible endpoint URL, None for AWS defaults.
            access_key: S3 access key ID.
            secret_key: S3 secret access key.
            bucket: Bucket holding staged and per-notice objects.
            region: AWS region (use us-east-1 for MinIO).
            connect_timeout: Connection timeout in seconds.
            read_timeout: Read timeout in seconds.
            max_retries: Maximum retry attempts for transient failures.
        """
        self._endpoint_url = endpoint_url
        self._region = region
        self.bucket = bucket

        config = Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": max_retries, "mode": "standard"},
            signature_version="s3v4",
        )

        self._client: S3Client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=config,
        )

        logger.debug(
            "Initialized DocumentStore for endpoint=%s bucket=%s",
            endpoint_url,
            bucket,
        )

    @classmethod
    def from_settings(cls, settings: S3Settings) -> DocumentStore:
        """Create a store from S3Settings configuration."""
        return cls(
            endpoint_url=settings.endpoint,
            access_key=settings.access_key.get_secret_value(),
            secret_key=settings.secret_key.get_secret_value(),
            bucket=settings.bucket,
            region=settings.region,
        )

    @staticmethod
    def _error_code(error: ClientError) -> str:
        return error.response.get("Error", {}).get("Code", "")

    # -------------------------------------------------------------------------
    # Primitive operations
    # -------------------------------------------------------------------------

    def ensure_bucket(self) -> bool:
        """Ensure the bucket exists, creating it if necessary.

        Returns:
            True if the bucket was created, False if it already existed.

        Raises:
            StorageError: If the check or creation fails.
        """
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return False
        except ClientError as e:
            if self._error_code(e) not in ("404", "NoSuchBucket"):
                raise StorageError(
                    f"Failed to check bucket existence: {e}",
                    bucket=self.bucket,
                    operation="head_bucket",
                ) from e

        try:
            # us-east-1 rejects an explicit LocationConstraint
            if self._region == "us-east-1":
                self._client.create_bucket(Bucket=self.bucket)
            else:
                self._client.create_bucket(
                    Bucket=self.bucket,
                    CreateBucketConfiguration={"LocationConstraint": self._region},
                )
        except ClientError as e:
            raise StorageError(
                f"Failed to create bucket: {e}",
                bucket=self.bucket,
                operation="create_bucket",
            ) from e

        logger.info("Created bucket: %s", self.bucket)
        return True

    def upload(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> StoredObject:
        """Upload content with its SHA-256 digest in object metadata.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            StorageError: If the upload fails.
        """
        sha256_digest = hashlib.sha256(data).hexdigest()
        upload_metadata = {"sha256-digest": sha256_digest}
        if metadata:
            upload_metadata.update(metadata)

        try:
            response = self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=upload_metadata,
            )
        except ClientError as e:
            if self._error_code(e) == "NoSuchBucket":
                raise BucketNotFoundError(
                    f"Bucket does not exist: {self.bucket}",
                    bucket=self.bucket,
                    key=key,
                    operation="upload",
                ) from e
            raise StorageError(
                f"Upload failed: {e}",
                bucket=self.bucket,
                key=key,
                operation="upload",
            ) from e

        logger.debug(
            "Uploaded %s/%s (%d bytes, sha256=%s)",
            self.bucket,
            key,
            len(data),
            sha256_digest[:16] + "...",
        )
        return StoredObject(
            key=key,
            bucket=self.bucket,
            sha256_digest=sha256_digest,
            size_bytes=len(data),
            etag=response.get("ETag", ""),
        )

    def copy(self, source_key: str, dest_key: str) -> str:
        """Copy an object within the bucket.

        Returns:
            The destination key.

        Raises:
            ObjectNotFoundError: If the source object does not exist.
            StorageError: If the copy fails.
        """
        try:
            self._client.copy_object(
                Bucket=self.bucket,
                Key=dest_key,
                CopySource={"Bucket": self.bucket, "Key": source_key},
            )
        except ClientError as e:
            if self._error_code(e) in ("NoSuchKey", "404"):
                raise ObjectNotFoundError(
                    f"Source object does not exist: {self.bucket}/{source_key}",
                    bucket=self.bucket,
                    key=source_key,
                    operation="copy",
                ) from e
            raise StorageError(
                f"Copy failed: {e}",
                bucket=self.bucket,
                key=dest_key,
                operation="copy",
            ) from e

        logger.debug("Copied %s to %s", source_key, dest_key)
        return dest_key

    def delete(self, key: str) -> bool:
        """Delete an object. Deleting a missing object is not an error.

        Raises:
            StorageError: If the delete fails.
        """
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise StorageError(
                f"Delete failed: {e}",
                bucket=self.bucket,
                key=key,
                operation="delete",
            ) from e
        logger.debug("Deleted %s/%s", self.bucket, key)
        return True

    def health_check(self) -> dict[str, Any]:
        """Check that the bucket is reachable.

        Raises:
            StorageError: If the bucket cannot be reached.
        """
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            raise StorageError(
                f"Health check failed: {e}",
                bucket=self.bucket,
                operation="health_check",
            ) from e
        return {"healthy": True, "endpoint": self._endpoint_url, "bucket": self.bucket}

    # -------------------------------------------------------------------------
    # Batch attachment workflow
    # -------------------------------------------------------------------------

    def stage_attachments(
        self,
        batch_id: str,
        attachments: Iterable[Attachment],
    ) -> dict[AttachmentField, str]:
        """Upload a batch's attachments under batches/{batch_id}/.

        If one upload fails, the attachments already staged are removed.

        Returns:
            Mapping of attachment field to staged key.

        Raises:
            StorageError: If an upload fails.
        """
        staged: dict[AttachmentField, str] = {}
        try:
            for attachment in attachments:
                key = staged_key(batch_id, attachment)
                self.upload(
                    key,
                    attachment.data,
                    content_type=attachment.content_type,
                    metadata={"batch-id": batch_id, "field": attachment.field.value},
                )
                staged[attachment.field] = key
        except StorageError:
            self.discard(staged.values())
            raise

        if staged:
            logger.info(
                "Staged batch attachments",
                extra={"batch_id": batch_id, "fields": [f.value for f in staged]},
            )
        return staged

    def attach_to_notice(
        self,
        notice_id: int | str,
        staged: Mapping[AttachmentField, str],
    ) -> dict[AttachmentField, str]:
        """Copy staged attachments to notices/{notice_id}/.

        Returns:
            Mapping of attachment field to per-notice key.

        Raises:
            StorageError: If a copy fails. Copies made before the failure are
                removed.
        """
        attached: dict[AttachmentField, str] = {}
        try:
            for field, source_key in staged.items():
                attached[field] = self.copy(source_key, notice_key(notice_id, source_key))
        except StorageError:
            self.discard(attached.values())
            raise
        return attached

    def discard(self, keys: Iterable[str]) -> list[str]:
        """Delete objects, logging instead of raising on failure.

        Used to clean up after a failed batch, where the original error is
        the one that must reach the caller.

        Returns:
            Keys that could not be deleted.
        """
        leftovers: list[str] = []
        for key in keys:
            try:
                self.delete(key)
            except StorageError as e:
                leftovers.append(key)
                logger.warning(
                    "Failed to delete %s during cleanup: %s",
                    key,
                    e.message,
                )
        return leftovers
