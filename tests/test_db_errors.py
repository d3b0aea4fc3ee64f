"""Tests for PostgreSQL error diagnostics extraction."""

from sqlalchemy.exc import IntegrityError, OperationalError

from blockserved.db.errors import PgDiagnostics
from tests.factories import FakePgError


class TestFromException:
    def test_not_null_violation(self):
        orig = FakePgError(
            'null value in column "recipient_address" violates not-null constraint',
            sqlstate="23502",
            table_name="served_notices",
            column_name="recipient_address",
            schema_name="public",
        )
        exc = IntegrityError("INSERT INTO served_notices ...", {}, orig)

        diagnostics = PgDiagnostics.from_exception(exc)

        assert diagnostics.sqlstate == "23502"
        assert diagnostics.table == "served_notices"
        assert diagnostics.column == "recipient_address"
        assert "not-null" in diagnostics.message

    def test_check_violation(self):
        orig = FakePgError(
            "new row violates check constraint",
            sqlstate="23514",
            constraint_name="ck_batch_uploads_batch_status",
            message_detail="Failing row contains (...)",
        )
        exc = IntegrityError("INSERT INTO batch_uploads ...", {}, orig)

        diagnostics = PgDiagnostics.from_exception(exc)

        assert diagnostics.constraint == "ck_batch_uploads_batch_status"
        assert diagnostics.detail == "Failing row contains (...)"

    def test_error_without_diag(self):
        exc = OperationalError("SELECT 1", {}, Exception("connection refused"))

        diagnostics = PgDiagnostics.from_exception(exc)

        assert diagnostics.message == "connection refused"
        assert diagnostics.sqlstate is None
        assert diagnostics.column is None

    def test_plain_exception(self):
        diagnostics = PgDiagnostics.from_exception(RuntimeError())
        assert diagnostics.message == "RuntimeError"


class TestAsDict:
    def test_only_populated_fields(self):
        diagnostics = PgDiagnostics(
            message="value too long for type character varying(20)",
            sqlstate="22001",
            column="status",
        )
        assert diagnostics.as_dict() == {
            "message": "value too long for type character varying(20)",
            "sqlstate": "22001",
            "column": "status",
        }
