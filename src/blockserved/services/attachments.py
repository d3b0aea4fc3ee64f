"""Batch attachments: the optional thumbnail and full document.

A batch carries at most one file per field. Files are checked against the
configured size limit and MIME allow-list before anything is stored.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class AttachmentField(str, Enum):
    """Multipart field names that may carry a file.

    Values:
        THUMBNAIL: Image shown on the Alert NFT
        DOCUMENT: Full legal document behind the Document NFT
    """

    THUMBNAIL = "thumbnail"
    DOCUMENT = "document"


@dataclass(frozen=True)
class Attachment:
    """One uploaded file, fully read into memory.

    Attributes:
        field: Which multipart field the file came from.
        filename: Client-supplied filename (may be empty).
        content_type: Declared MIME type.
        data: File content.
    """

    field: AttachmentField
    filename: str
    content_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        """File extension including the dot, or an empty string.

        Taken from the filename when it has one, otherwise guessed from the
        content type.
        """
        suffix = PurePosixPath(self.filename or "").suffix.lower()
        if suffix:
            return suffix
        return mimetypes.guess_extension(self.content_type or "") or ""


class AttachmentRejectedError(Exception):
    """Raised when an attachment violates the size or type limits.

    Attributes:
        message: Human-readable error description.
        field: The multipart field of the rejected file.
    """

    def __init__(self, message: str, *, field: AttachmentField) -> None:
        self.message = message
        self.field = field
        super().__init__(message)


def check_attachment(
    attachment: Attachment,
    *,
    max_bytes: int,
    allowed_content_types: Iterable[str],
) -> None:
    """Validate one attachment against the batch limits.

    Args:
        attachment: File to check.
        max_bytes: Maximum accepted size.
        allowed_content_types: Accepted MIME types (lowercase).

    Raises:
        AttachmentRejectedError: If the file is empty, too large or of a
            type that is not allowed.
    """
    if attachment.size_bytes == 0:
        raise AttachmentRejectedError(
            f"{attachment.field.value} is empty",
            field=attachment.field,
        )
    if attachment.size_bytes > max_bytes:
        raise AttachmentRejectedError(
            f"{attachment.field.value} exceeds the {max_bytes} byte limit "
            f"({attachment.size_bytes} bytes)",
            field=attachment.field,
        )

    content_type = (attachment.content_type or "").split(";", 1)[0].strip().lower()
    if content_type not in set(allowed_content_types):
        raise AttachmentRejectedError(
            f"{attachment.field.value} has unsupported type '{content_type or 'unknown'}'. "
            "Only images and PDFs are allowed",
            field=attachment.field,
        )
