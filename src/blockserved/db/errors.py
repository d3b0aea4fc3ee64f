"""PostgreSQL error diagnostics.

SQLAlchemy wraps driver errors in DBAPIError; the underlying psycopg error
exposes the server's diagnostic fields (SQLSTATE, constraint, column, ...).
These are what an operator needs to find the failing column or constraint.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.exc import DBAPIError


@dataclass(frozen=True)
class PgDiagnostics:
    """Diagnostic fields reported by PostgreSQL for a failed statement."""

    message: str
    sqlstate: str | None = None
    constraint: str | None = None
    table: str | None = None
    column: str | None = None
    datatype: str | None = None
    schema: str | None = None
    detail: str | None = None
    hint: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> PgDiagnostics:
        """Extract diagnostics from a SQLAlchemy or psycopg exception.

        Exceptions that carry no server diagnostics still produce an
        instance holding just the message.
        """
        orig = exc.orig if isinstance(exc, DBAPIError) and exc.orig is not None else exc
        diag = getattr(orig, "diag", None)
        message = str(orig).strip() or type(orig).__name__
        if diag is None:
            return cls(message=message, sqlstate=getattr(orig, "sqlstate", None))
        return cls(
            message=getattr(diag, "message_primary", None) or message,
            sqlstate=getattr(diag, "sqlstate", None) or getattr(orig, "sqlstate", None),
            constraint=getattr(diag, "constraint_name", None),
            table=getattr(diag, "table_name", None),
            column=getattr(diag, "column_name", None),
            datatype=getattr(diag, "datatype_name", None),
            schema=getattr(diag, "schema_name", None),
            detail=getattr(diag, "message_detail", None),
            hint=getattr(diag, "message_hint", None),
        )

    def as_dict(self) -> dict[str, Any]:
        """Return the populated fields only."""
        return {key: value for key, value in asdict(self).items() if value is not None}
