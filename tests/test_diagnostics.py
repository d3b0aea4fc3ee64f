"""Tests for the schema probe and database check (mocked session)."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import DataError, OperationalError

from blockserved.services.diagnostics import EXPECTED_TABLES, check_database, run_schema_probe
from tests.factories import FakePgError

SERVED_NOTICE_COLUMNS = [
    ("id", "bigint", "NO"),
    ("notice_id", "text", "NO"),
    ("recipient_address", "text", "NO"),
    ("ipfs_hash", "text", "YES"),
]


class TestCheckDatabase:
    async def test_select_one(self, mock_db_session):
        result = MagicMock()
        result.scalar_one.return_value = 1
        mock_db_session.execute.return_value = result

        assert await check_database(mock_db_session) is True
        assert str(mock_db_session.execute.call_args.args[0]) == "SELECT 1"

    async def test_connection_error_propagates(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        with pytest.raises(OperationalError):
            await check_database(mock_db_session)


class TestSchemaProbe:
    async def test_all_steps_pass(self, mock_db_session, id_generator):
        mock_db_session.execute.side_effect = [
            [(name,) for name in EXPECTED_TABLES],
            SERVED_NOTICE_COLUMNS,
            None,
            None,
        ]

        report = await run_schema_probe(mock_db_session, id_generator)

        assert report["success"] is True
        assert [step["step"] for step in report["steps"]] == [
            "tables",
            "columns",
            "begin",
            "insert_batch",
            "insert_notice",
            "rollback",
        ]
        columns = report["steps"][1]["columns"]
        assert columns[1] == {"name": "notice_id", "type": "text", "nullable": False}
        assert report["steps"][4]["noticeId"] == "486643600"
        mock_db_session.rollback.assert_awaited_once()
        mock_db_session.commit.assert_not_awaited()

    async def test_notice_insert_skips_existing_notice(self, mock_db_session, id_generator):
        mock_db_session.execute.side_effect = [
            [(name,) for name in EXPECTED_TABLES],
            SERVED_NOTICE_COLUMNS,
            None,
            None,
        ]

        await run_schema_probe(mock_db_session, id_generator)

        notice_stmt = mock_db_session.execute.call_args_list[3].args[0]
        sql = str(notice_stmt.compile(dialect=postgresql.dialect()))
        assert "INSERT INTO served_notices" in sql
        assert "ON CONFLICT (notice_id) DO NOTHING" in sql

    async def test_missing_table_reported(self, mock_db_session, id_generator):
        mock_db_session.execute.side_effect = [
            [("batch_uploads",), ("served_notices",)],
            SERVED_NOTICE_COLUMNS,
            None,
            None,
        ]

        report = await run_schema_probe(mock_db_session, id_generator)

        assert report["success"] is False
        assert report["steps"][0]["missing"] == ["notice_batch_items", "notice_components"]
        assert "failedAt" not in report

    async def test_failing_insert_reports_diagnostics(self, mock_db_session, id_generator):
        orig = FakePgError(
            "value out of range for type integer",
            sqlstate="22003",
            column_name="notice_id",
            table_name="served_notices",
        )
        mock_db_session.execute.side_effect = [
            [(name,) for name in EXPECTED_TABLES],
            SERVED_NOTICE_COLUMNS,
            None,
            DataError("INSERT INTO served_notices ...", {}, orig),
        ]

        report = await run_schema_probe(mock_db_session, id_generator)

        assert report["success"] is False
        assert report["failedAt"] == "insert_notice"
        assert report["error"]["sqlstate"] == "22003"
        assert report["error"]["column"] == "notice_id"
        assert report["steps"][-1] == {"step": "insert_notice", "ok": False}
        mock_db_session.rollback.assert_awaited_once()
