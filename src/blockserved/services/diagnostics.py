"""Schema diagnostics for the batch tables.

Runs the same statements the ingestion path runs, against the live schema,
inside a transaction that is always rolled back. When a column type or
constraint drifts from what the code expects, the report names the failing
step together with PostgreSQL's diagnostics (SQLSTATE, column, constraint).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from blockserved.db.errors import PgDiagnostics
from blockserved.db.models import BatchStatus, BatchUpload, ServedNotice

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from blockserved.services.ids import IdGenerator

logger = logging.getLogger(__name__)

EXPECTED_TABLES = (
    "batch_uploads",
    "served_notices",
    "notice_batch_items",
    "notice_components",
)

# Shape-valid placeholder address for probe rows
PROBE_ADDRESS = "T" + "0" * 33


async def check_database(session: AsyncSession) -> bool:
    """Run SELECT 1.

    Raises:
        SQLAlchemyError: If the database cannot be reached.
    """
    result = await session.execute(text("SELECT 1"))
    return result.scalar_one() == 1


async def run_schema_probe(session: AsyncSession, id_generator: IdGenerator) -> dict[str, Any]:
    """Probe the batch schema with test writes, then roll back.

    Steps, in order: list expected tables, list served_notices columns, open
    a transaction, insert a test batch, insert a test notice, roll back.

    Returns:
        {"success": bool, "steps": [...]} plus "failedAt" and "error" (the
        PostgreSQL diagnostics) when a step fails.
    """
    steps: list[dict[str, Any]] = []
    current = "tables"
    try:
        result = await session.execute(
            text(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = current_schema() AND table_name = ANY(:names)"
            ),
            {"names": list(EXPECTED_TABLES)},
        )
        present = sorted(row[0] for row in result)
        missing = [name for name in EXPECTED_TABLES if name not in present]
        steps.append({"step": current, "ok": not missing, "present": present, "missing": missing})

        current = "columns"
        result = await session.execute(
            text(
                "SELECT column_name, data_type, is_nullable "
                "FROM information_schema.columns "
                "WHERE table_schema = current_schema() AND table_name = 'served_notices' "
                "ORDER BY ordinal_position"
            )
        )
        columns = [
            {"name": name, "type": data_type, "nullable": nullable == "YES"}
            for name, data_type, nullable in result
        ]
        steps.append({"step": current, "ok": bool(columns), "columns": columns})

        current = "begin"
        # Autobegin: the first write below opens the transaction
        steps.append({"step": current, "ok": True})

        current = "insert_batch"
        batch_id = id_generator.generate_text_id("DEBUG")
        await session.execute(
            pg_insert(BatchUpload.__table__).values(
                batch_id=batch_id,
                server_address=PROBE_ADDRESS,
                recipient_count=1,
                status=BatchStatus.PROCESSING,
                metadata={"probe": True},
            )
        )
        steps.append({"step": current, "ok": True, "batchId": batch_id})

        current = "insert_notice"
        notice_id = id_generator.generate_safe_integer_id()
        table = ServedNotice.__table__
        # A live notice with the same ID is left alone; types are still checked
        await session.execute(
            pg_insert(table)
            .values(
                notice_id=str(notice_id),
                server_address=PROBE_ADDRESS,
                recipient_address=PROBE_ADDRESS,
                notice_type="Diagnostic Probe",
                case_number="DEBUG-PROBE",
                alert_id=str(notice_id),
                document_id=str(notice_id + 1),
                issuing_agency="",
                has_document=False,
                batch_id=batch_id,
            )
            .on_conflict_do_nothing(index_elements=[table.c.notice_id])
        )
        steps.append({"step": current, "ok": True, "noticeId": str(notice_id)})

        current = "rollback"
        await session.rollback()
        steps.append({"step": current, "ok": True})

    except SQLAlchemyError as e:
        await session.rollback()
        diagnostics = PgDiagnostics.from_exception(e)
        steps.append({"step": current, "ok": False})
        logger.warning(
            "Schema probe failed at %s: %s",
            current,
            diagnostics.message,
            extra={"pg_diagnostics": diagnostics.as_dict()},
        )
        return {
            "success": False,
            "steps": steps,
            "failedAt": current,
            "error": diagnostics.as_dict(),
        }

    return {"success": all(step["ok"] for step in steps), "steps": steps}
