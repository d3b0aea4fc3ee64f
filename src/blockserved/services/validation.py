"""Batch request validation and normalisation.

Clients send batches as JSON bodies or multipart form fields, so every value
may arrive as a native list, a JSON string or a comma-separated string. This
module turns that input into one strict NormalizedBatch; nothing downstream
parses raw fields again.

Validation is permissive: malformed recipients are dropped with a warning
instead of failing the batch. Only a missing or invalid serverAddress, or no
usable recipient at all, makes a batch invalid.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from blockserved.services.ids import IdGenerator, get_id_generator

logger = logging.getLogger(__name__)

TRON_ADDRESS_PREFIX = "T"
TRON_ADDRESS_LENGTH = 34
DEFAULT_NOTICE_TYPE = "Legal Notice"

# Characters kept in a case number; everything else is stripped
_CASE_NUMBER_DISALLOWED = re.compile(r"[^A-Za-z0-9\-_/\s]")


def is_tron_address(value: object) -> bool:
    """Check the TRON address shape: a 34-character string starting with T.

    Only the shape is checked; base58 alphabet and checksum are left to the
    chain.
    """
    return (
        isinstance(value, str)
        and len(value) == TRON_ADDRESS_LENGTH
        and value.startswith(TRON_ADDRESS_PREFIX)
    )


def sanitize_case_number(value: str) -> str:
    return _CASE_NUMBER_DISALLOWED.sub("", value).strip()


class NormalizedBatch(BaseModel):
    """A validated batch, ready for ingestion.

    alert_ids is positionally aligned with recipients. A None entry, or a
    missing tail, means the notice ID is generated at ingestion time.
    """

    model_config = ConfigDict(
        extra="forbid",
        strict=True,
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    batch_id: str = Field(min_length=1)
    server_address: str
    recipients: list[str] = Field(min_length=1)
    case_number: str = ""
    notice_type: str = DEFAULT_NOTICE_TYPE
    issuing_agency: str = ""
    ipfs_hash: str | None = None
    encryption_key: str | None = None
    alert_ids: list[int | None] = Field(default_factory=list)

    @field_validator("server_address")
    @classmethod
    def validate_server_address(cls, v: str) -> str:
        if not is_tron_address(v):
            msg = "serverAddress is not a valid TRON address"
            raise ValueError(msg)
        return v

    @field_validator("recipients")
    @classmethod
    def validate_recipients(cls, v: list[str]) -> list[str]:
        invalid = [address for address in v if not is_tron_address(address)]
        if invalid:
            msg = f"Invalid recipient addresses: {', '.join(invalid)}"
            raise ValueError(msg)
        return v

    def alert_id_for(self, index: int) -> int | None:
        """Client-supplied alert ID for the recipient at index, if any."""
        if index < len(self.alert_ids):
            return self.alert_ids[index]
        return None


@dataclass
class BatchValidationResult:
    """Outcome of validate_batch.

    Attributes:
        valid: True when data is usable for ingestion.
        errors: Problems that make the batch invalid.
        warnings: Problems that were corrected or ignored.
        data: Normalized batch, None when invalid.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    data: NormalizedBatch | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "data": self.data.model_dump(by_alias=True) if self.data else None,
        }


# -----------------------------------------------------------------------------
# Field parsing
# -----------------------------------------------------------------------------


def _parse_list(value: Any, name: str) -> list[Any] | None:
    """Parse a list given natively, as a JSON array string or comma-separated.

    Returns None for absent or blank values.

    Raises:
        ValueError: If the value cannot be read as a list.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return list(value)
    if not isinstance(value, str):
        msg = f"{name} must be a list"
        raise ValueError(msg)

    text = value.strip()
    if not text:
        return None
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            msg = f"{name} is not valid JSON: {e.msg}"
            raise ValueError(msg) from e
        if not isinstance(parsed, list):
            msg = f"{name} must be a JSON array"
            raise ValueError(msg)
        return parsed
    return [item.strip() for item in text.split(",") if item.strip()]


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _numeric_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isascii() and text.isdigit():
            return int(text)
    return None


def _coerce_ids(
    values: list[Any],
    name: str,
    ids: IdGenerator,
    warnings: list[str],
) -> list[int | None]:
    coerced: list[int | None] = []
    for index, value in enumerate(values):
        try:
            coerced.append(ids.to_safe_integer_id(value))
        except ValueError:
            warnings.append(f"{name}[{index}] is not a usable ID and will be generated")
            coerced.append(None)
    return coerced


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


def validate_batch(
    raw: Mapping[str, Any],
    *,
    id_generator: IdGenerator | None = None,
    default_notice_type: str = DEFAULT_NOTICE_TYPE,
) -> BatchValidationResult:
    """Validate and normalise a raw batch request.

    Args:
        raw: Request fields keyed by their wire names (batchId, recipients,
            serverAddress, caseNumber, ...).
        id_generator: Generator for batch IDs and alert ID coercion. Defaults
            to the process-wide generator.
        default_notice_type: Notice type used when none is given.

    Returns:
        BatchValidationResult. data is set only when valid is True.
    """
    if not isinstance(raw, Mapping):
        return BatchValidationResult(valid=False, errors=["Request body must be an object"])

    ids = id_generator if id_generator is not None else get_id_generator()
    errors: list[str] = []
    warnings: list[str] = []

    # Server address
    server_address = raw.get("serverAddress")
    if isinstance(server_address, str):
        server_address = server_address.strip()
    if not server_address:
        errors.append("serverAddress is required")
    elif not is_tron_address(server_address):
        errors.append("serverAddress is not a valid TRON address")

    # Recipients, keeping the original position of each survivor
    recipients: list[str] = []
    kept_positions: list[int] = []
    raw_recipients: list[Any] | None = None
    try:
        raw_recipients = _parse_list(raw.get("recipients"), "recipients")
    except ValueError as e:
        errors.append(str(e))
    else:
        if not raw_recipients:
            errors.append("recipients is required and must not be empty")
        else:
            for position, entry in enumerate(raw_recipients):
                address = entry.strip() if isinstance(entry, str) else entry
                if is_tron_address(address):
                    recipients.append(address)
                    kept_positions.append(position)
                else:
                    warnings.append(f"Dropped invalid recipient address: {entry!r}")
            if not recipients:
                errors.append("recipients contains no valid TRON address")

    # Case number
    case_number = ""
    raw_case_number = raw.get("caseNumber")
    if raw_case_number is not None:
        original = str(raw_case_number)
        case_number = sanitize_case_number(original)
        if _CASE_NUMBER_DISALLOWED.search(original):
            warnings.append(
                f"caseNumber contained invalid characters and was changed to {case_number!r}"
            )

    # Alert and document IDs
    alert_ids: list[int | None] = []
    try:
        raw_alert_ids = _parse_list(raw.get("alertIds"), "alertIds")
    except ValueError as e:
        warnings.append(f"{e}; alert IDs will be generated")
        raw_alert_ids = None

    raw_count = len(raw_recipients) if raw_recipients else 0
    coerced_alert_ids: list[int | None] = []
    if raw_alert_ids is not None:
        if len(raw_alert_ids) != raw_count:
            warnings.append(
                f"alertIds count ({len(raw_alert_ids)}) does not match "
                f"recipients count ({raw_count})"
            )
        coerced_alert_ids = _coerce_ids(raw_alert_ids, "alertIds", ids, warnings)
        alert_ids = [
            coerced_alert_ids[pos] if pos < len(coerced_alert_ids) else None
            for pos in kept_positions
        ]
        seen_alert_ids: set[int] = set()
        for index, alert_id in enumerate(alert_ids):
            if alert_id is None:
                continue
            if alert_id in seen_alert_ids:
                warnings.append(
                    f"alertIds repeats {alert_id}; a new alert ID will be generated "
                    f"for {recipients[index]}"
                )
                alert_ids[index] = None
            else:
                seen_alert_ids.add(alert_id)
        # Trailing gaps carry no information
        while alert_ids and alert_ids[-1] is None:
            alert_ids.pop()

    try:
        raw_document_ids = _parse_list(raw.get("documentIds"), "documentIds")
    except ValueError as e:
        warnings.append(f"{e}; document IDs will be derived")
        raw_document_ids = None

    if raw_document_ids is not None:
        if len(raw_document_ids) != raw_count:
            warnings.append(
                f"documentIds count ({len(raw_document_ids)}) does not match "
                f"recipients count ({raw_count})"
            )
        # Only compared against the alert IDs, so never mapped
        for index, raw_document_id in enumerate(raw_document_ids):
            document_id = _numeric_id(raw_document_id)
            if document_id is None:
                warnings.append(f"documentIds[{index}] is not a numeric ID and is ignored")
                continue
            alert_id = coerced_alert_ids[index] if index < len(coerced_alert_ids) else None
            if alert_id is None:
                warnings.append(f"documentIds[{index}] has no matching alert ID and is ignored")
            elif document_id != alert_id + 1:
                warnings.append(
                    f"documentIds[{index}] ({document_id}) does not equal alertId + 1; "
                    f"using {alert_id + 1}"
                )

    # Batch ID
    batch_id = _optional_text(raw.get("batchId"))
    if batch_id is None:
        batch_id = ids.generate_batch_id()
        logger.debug("Generated batch ID %s", batch_id)

    if errors:
        logger.info(
            "Batch rejected by validation",
            extra={"batch_id": batch_id, "errors": errors},
        )
        return BatchValidationResult(valid=False, errors=errors, warnings=warnings)

    try:
        data = NormalizedBatch(
            batch_id=batch_id,
            server_address=server_address,
            recipients=recipients,
            case_number=case_number,
            notice_type=_optional_text(raw.get("noticeType")) or default_notice_type,
            issuing_agency=_optional_text(raw.get("issuingAgency")) or "",
            ipfs_hash=_optional_text(raw.get("ipfsHash")),
            encryption_key=_optional_text(raw.get("encryptionKey")),
            alert_ids=alert_ids,
        )
    except ValidationError as e:
        errors.extend(error["msg"] for error in e.errors())
        return BatchValidationResult(valid=False, errors=errors, warnings=warnings)

    if warnings:
        logger.info(
            "Batch normalised with warnings",
            extra={"batch_id": batch_id, "warnings": warnings},
        )
    return BatchValidationResult(valid=True, errors=errors, warnings=warnings, data=data)
