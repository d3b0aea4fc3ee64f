"""Base model definitions, mixins, and common types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Common column type annotations
- Enum types shared by batch and notice models
"""

import enum
from datetime import datetime
from typing import Annotated

from sqlalchemy import BigInteger, DateTime, MetaData, Text, text
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Shared metadata with naming convention
metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()

# Surrogate key for every table; business keys carry their own unique constraints
BigIntPrimaryKey = Annotated[
    int,
    mapped_column(BigInteger, primary_key=True, autoincrement=True),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), server_default=text("now()")),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]

# TRON addresses, notice IDs and other free-form identifiers are stored as TEXT.
# notice_id used to be INTEGER and overflowed; see migration 002.
TextColumn = Annotated[str, mapped_column(Text, nullable=False)]
OptionalText = Annotated[str | None, mapped_column(Text, nullable=True)]


class Base(DeclarativeBase):
    """Declarative base for all BlockServed models."""

    metadata = metadata
    registry = type_registry


# =============================================================================
# Common Enums
# =============================================================================


class BatchStatus(enum.Enum):
    """Aggregate status of a submitted batch.

    Transitions only from PROCESSING to one terminal state.

    Values:
        PROCESSING: Batch row written, recipients being processed
        SUCCESS: Every recipient was served
        PARTIAL: Some recipients failed at the application level
        FAILED: No recipient was served
    """

    PROCESSING = "processing"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class BatchItemStatus(enum.Enum):
    """Outcome of one recipient within a batch.

    Values:
        SUCCESS: Served notice written
        FAILED: Item failed; recorded, never retried in place
    """

    SUCCESS = "success"
    FAILED = "failed"
