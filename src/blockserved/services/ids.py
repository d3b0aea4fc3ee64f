"""Identifier generation for notices and batches.

Notice IDs must fit the legacy signed 32-bit column that older clients and
the on-chain metadata still expect, even though served_notices.notice_id is
TEXT since migration 002. This module provides:
- Safe integer IDs (0 < id <= 2_147_483_647) built from the clock and a
  rolling sequence
- Prefixed text IDs and UUIDs for call sites not bound by the integer column
- A bounded mapping from arbitrary external IDs to safe integer IDs

The sequence counter is process-local. Two processes can produce the same
candidate in the same second; every write path therefore upserts on
notice_id (ON CONFLICT), which is the actual uniqueness guarantee.

Example:
    from blockserved.services.ids import get_id_generator

    ids = get_id_generator()
    notice_id = ids.generate_safe_integer_id()
    alert_id, document_id = derive_notice_ids(notice_id)
"""

from __future__ import annotations

import itertools
import logging
import secrets
import time
import uuid
from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Container

logger = logging.getLogger(__name__)

MAX_SAFE_INTEGER_ID = 2_147_483_647
DEFAULT_ID_CACHE_SIZE = 10_000

# Timestamp digits kept in a safe ID, followed by a 2-digit sequence
_TIMESTAMP_DIGITS = 7
_SEQUENCE_MODULUS = 100


def is_safe_integer_id(value: object) -> bool:
    """Check whether a value already is a safe integer ID.

    Accepts ints and strings of ASCII digits. Booleans are rejected even
    though they subclass int.

    Args:
        value: Candidate value.

    Returns:
        True if the value parses to an int in (0, MAX_SAFE_INTEGER_ID].
    """
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return 0 < value <= MAX_SAFE_INTEGER_ID
    if isinstance(value, str):
        text = value.strip()
        return text.isascii() and text.isdigit() and 0 < int(text) <= MAX_SAFE_INTEGER_ID
    return False


def derive_notice_ids(notice_id: int) -> tuple[int, int]:
    """Return (alert_id, document_id) for a notice.

    The alert NFT reuses the notice ID and the document NFT is the next one.
    """
    return notice_id, notice_id + 1


class IdGenerator:
    """Generates notice, batch and mapped identifiers.

    The external-to-safe mapping is kept in both directions and bounded:
    once cache_size entries are held, the least recently used mapping is
    evicted. An evicted external ID maps to a new safe ID if seen again.
    """

    def __init__(
        self,
        cache_size: int = DEFAULT_ID_CACHE_SIZE,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the generator.

        Args:
            cache_size: Maximum number of external ID mappings kept.
            clock: Source of Unix time in seconds (injectable for tests).
        """
        if cache_size < 1:
            msg = f"cache_size must be positive, got {cache_size}"
            raise ValueError(msg)
        self._cache_size = cache_size
        self._clock = clock
        self._sequence = itertools.count()
        self._to_safe: OrderedDict[str, int] = OrderedDict()
        self._to_external: dict[int, str] = {}

    @property
    def cache_size(self) -> int:
        return self._cache_size

    def __len__(self) -> int:
        return len(self._to_safe)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_safe_integer_id(self, avoid: Container[int] = ()) -> int:
        """Generate an ID that fits a signed 32-bit column.

        The last 7 digits of the Unix time in seconds are followed by a
        2-digit rolling sequence. A candidate outside (0, MAX_SAFE_INTEGER_ID],
        or one contained in avoid, is replaced by a random 9-digit integer.

        Args:
            avoid: IDs already handed out by the caller (e.g. earlier
                notices of the same batch); the sequence wraps every 100
                IDs within a second.

        Returns:
            Integer in (0, MAX_SAFE_INTEGER_ID].
        """
        seconds = int(self._clock()) % 10**_TIMESTAMP_DIGITS
        sequence = next(self._sequence) % _SEQUENCE_MODULUS
        candidate = int(f"{seconds:0{_TIMESTAMP_DIGITS}d}{sequence:02d}")

        if 0 < candidate <= MAX_SAFE_INTEGER_ID and candidate not in avoid:
            return candidate

        logger.debug("Safe ID candidate %d unusable, using random fallback", candidate)
        fallback = secrets.randbelow(900_000_000) + 100_000_000
        while fallback in avoid:
            fallback = secrets.randbelow(900_000_000) + 100_000_000
        return fallback

    def generate_text_id(self, prefix: str = "ID") -> str:
        """Generate a prefixed text ID: PREFIX_<epoch ms>_<6 hex chars>."""
        millis = int(self._clock() * 1000)
        return f"{prefix.upper()}_{millis}_{secrets.token_hex(3)}"

    def generate_uuid(self) -> str:
        return str(uuid.uuid4())

    def generate_batch_id(self) -> str:
        return self.generate_text_id("BATCH")

    # -------------------------------------------------------------------------
    # External ID mapping
    # -------------------------------------------------------------------------

    def to_safe_integer_id(self, external_id: int | str) -> int:
        """Coerce an arbitrary ID to a safe integer ID.

        Values that already are safe integers are returned as ints. Any other
        value gets a generated safe ID, remembered so the same external ID
        keeps mapping to the same safe ID while it stays cached.

        Args:
            external_id: Integer or string identifier from a client.

        Returns:
            Safe integer ID.

        Raises:
            ValueError: If the value is None, empty or not an int or str.
        """
        if is_safe_integer_id(external_id):
            return int(str(external_id).strip())

        if isinstance(external_id, bool) or not isinstance(external_id, (int, str)):
            msg = f"Cannot map ID of type {type(external_id).__name__}"
            raise ValueError(msg)

        key = str(external_id).strip()
        if not key:
            msg = "Cannot map an empty ID"
            raise ValueError(msg)

        cached = self._to_safe.get(key)
        if cached is not None:
            self._to_safe.move_to_end(key)
            return cached

        safe_id = self.generate_safe_integer_id(avoid=self._to_external)
        self._to_safe[key] = safe_id
        self._to_external[safe_id] = key
        self._evict()

        logger.debug(
            "Mapped external ID to safe ID",
            extra={"external_id": key, "safe_id": safe_id},
        )
        return safe_id

    def lookup_external_id(self, safe_id: int) -> str | None:
        """Return the external ID a safe ID was generated for, if cached."""
        return self._to_external.get(safe_id)

    def clear(self) -> None:
        """Drop all cached mappings."""
        self._to_safe.clear()
        self._to_external.clear()

    def _evict(self) -> None:
        while len(self._to_safe) > self._cache_size:
            evicted_key, evicted_id = self._to_safe.popitem(last=False)
            self._to_external.pop(evicted_id, None)
            logger.debug("Evicted ID mapping for %s", evicted_key)


# =============================================================================
# Process-wide generator
# =============================================================================

_default_generator: IdGenerator | None = None


def get_id_generator() -> IdGenerator:
    """Get the process-wide generator, creating it on first use."""
    global _default_generator

    if _default_generator is None:
        _default_generator = IdGenerator()
    return _default_generator


def configure_id_generator(cache_size: int) -> IdGenerator:
    """Replace the process-wide generator with one of the given cache size.

    Called once at application startup from the batch settings.
    """
    global _default_generator

    _default_generator = IdGenerator(cache_size=cache_size)
    logger.info("ID generator configured", extra={"id_cache_size": cache_size})
    return _default_generator


def generate_safe_integer_id() -> int:
    return get_id_generator().generate_safe_integer_id()


def generate_text_id(prefix: str = "ID") -> str:
    return get_id_generator().generate_text_id(prefix)


def generate_uuid() -> str:
    return get_id_generator().generate_uuid()


def generate_batch_id() -> str:
    return get_id_generator().generate_batch_id()


def to_safe_integer_id(external_id: int | str) -> int:
    return get_id_generator().to_safe_integer_id(external_id)
