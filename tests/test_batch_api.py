"""Tests for batch API endpoints.

Tests cover:
- Batch submission (POST /api/batch/documents)
- Attachment checks on submission
- Transaction failure handling
- Batch status (GET /api/batch/{batch_id}/status)
- Validation dry-run (POST /api/batch/validate)
- Schema probe (POST /api/batch/debug)
- Database and storage health (GET /api/batch/health)
- Document store dependency (bucket ensured once)

The database session and document store are mocked in conftest.py.
"""

import json
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError

from blockserved.api.routers.batch import get_document_store
from blockserved.db.models import BatchItemStatus, BatchStatus, BatchUpload, NoticeBatchItem
from blockserved.services.attachments import AttachmentField
from blockserved.services.storage import DocumentStore, StorageError
from tests.factories import PDF_BYTES, PNG_BYTES, SERVER_ADDRESS, tron_address

BATCH_ID = "BATCH_1754866436198_abc123"
ALICE = tron_address("Alice")
BOB = tron_address("Bob")


def _form(**overrides) -> dict[str, str]:
    """Multipart form fields for a two-recipient batch."""
    fields = {
        "batchId": BATCH_ID,
        "serverAddress": SERVER_ADDRESS,
        "recipients": json.dumps([ALICE, BOB]),
        "caseNumber": "34-2501-001",
        "noticeType": "Summons",
        "issuingAgency": "County Court",
    }
    fields.update(overrides)
    return {key: value for key, value in fields.items() if value is not None}


# -----------------------------------------------------------------------------
# Batch submission
# -----------------------------------------------------------------------------


class TestUploadBatchDocuments:
    """Tests for POST /api/batch/documents."""

    async def test_success(self, api_client: AsyncClient, mock_db_session):
        response = await api_client.post("/api/batch/documents", data=_form())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["batchId"] == BATCH_ID
        assert body["status"] == "success"
        assert body["totalRecipients"] == 2
        assert body["successCount"] == 2
        assert body["failureCount"] == 0
        assert body["files"] == {"thumbnail": None, "document": None}
        assert body["warnings"] == []

        results = body["results"]
        assert [r["recipient"] for r in results] == [ALICE, BOB]
        assert results[0]["noticeId"] == "486643600"
        assert results[0]["alertId"] == "486643600"
        assert results[0]["documentId"] == "486643601"
        assert all(r["status"] == "success" for r in results)

        mock_db_session.commit.assert_awaited_once()

    async def test_comma_separated_recipients(self, api_client: AsyncClient):
        response = await api_client.post(
            "/api/batch/documents", data=_form(recipients=f"{ALICE},{BOB}")
        )
        assert response.status_code == 200
        assert response.json()["totalRecipients"] == 2

    async def test_invalid_recipient_dropped_with_warning(self, api_client: AsyncClient):
        response = await api_client.post(
            "/api/batch/documents",
            data=_form(recipients=json.dumps([ALICE, "not-an-address"])),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["totalRecipients"] == 1
        assert len(body["warnings"]) == 1

    async def test_batch_id_generated_when_missing(self, api_client: AsyncClient):
        response = await api_client.post("/api/batch/documents", data=_form(batchId=None))

        assert response.status_code == 200
        assert response.json()["batchId"].startswith("BATCH_")

    async def test_client_alert_ids(self, api_client: AsyncClient):
        response = await api_client.post(
            "/api/batch/documents",
            data=_form(alertIds=json.dumps([1000, 2000]), documentIds=json.dumps([1001, 2001])),
        )

        results = response.json()["results"]
        assert [r["alertId"] for r in results] == ["1000", "2000"]
        assert [r["documentId"] for r in results] == ["1001", "2001"]

    async def test_validation_failure(self, api_client: AsyncClient, mock_db_session):
        response = await api_client.post(
            "/api/batch/documents", data=_form(serverAddress="invalid")
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["message"] == "Batch validation failed"
        assert body["detail"]["errors"] == ["serverAddress is not a valid TRON address"]
        assert "request_id" in body
        mock_db_session.execute.assert_not_awaited()

    async def test_missing_recipients(self, api_client: AsyncClient):
        response = await api_client.post("/api/batch/documents", data=_form(recipients=None))

        assert response.status_code == 400
        assert "recipients is required and must not be empty" in response.json()["detail"]["errors"]

    async def test_with_attachments(
        self, api_client: AsyncClient, mock_document_store, mock_db_session
    ):
        mock_document_store.stage_attachments.return_value = {
            AttachmentField.THUMBNAIL: f"batches/{BATCH_ID}/thumbnail.png",
            AttachmentField.DOCUMENT: f"batches/{BATCH_ID}/document.pdf",
        }
        mock_document_store.attach_to_notice.side_effect = lambda notice_id, staged: {
            field: f"notices/{notice_id}/{key.rsplit('/', 1)[-1]}" for field, key in staged.items()
        }

        response = await api_client.post(
            "/api/batch/documents",
            data=_form(),
            files={
                "thumbnail": ("alert.png", PNG_BYTES, "image/png"),
                "document": ("summons.pdf", PDF_BYTES, "application/pdf"),
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["files"] == {
            "thumbnail": f"batches/{BATCH_ID}/thumbnail.png",
            "document": f"batches/{BATCH_ID}/document.pdf",
        }

        batch_id, attachments = mock_document_store.stage_attachments.call_args.args
        assert batch_id == BATCH_ID
        assert [a.field for a in attachments] == [
            AttachmentField.THUMBNAIL,
            AttachmentField.DOCUMENT,
        ]
        assert attachments[1].data == PDF_BYTES
        assert mock_document_store.attach_to_notice.call_count == 2

    async def test_rejects_disallowed_attachment_type(
        self, api_client: AsyncClient, mock_document_store
    ):
        response = await api_client.post(
            "/api/batch/documents",
            data=_form(),
            files={"thumbnail": ("page.html", b"<html></html>", "text/html")},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["detail"] == {"field": "thumbnail"}
        mock_document_store.stage_attachments.assert_not_called()

    @pytest.mark.parametrize("batch_settings", [{"max_upload_bytes": 16}], indirect=True)
    async def test_rejects_oversized_attachment(self, api_client: AsyncClient):
        response = await api_client.post(
            "/api/batch/documents",
            data=_form(),
            files={"document": ("summons.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 400
        assert "exceeds the 16 byte limit" in response.json()["message"]

    async def test_partial_storage_failure(self, api_client: AsyncClient, mock_document_store):
        mock_document_store.stage_attachments.return_value = {
            AttachmentField.DOCUMENT: f"batches/{BATCH_ID}/document.pdf"
        }
        mock_document_store.attach_to_notice.side_effect = [
            {AttachmentField.DOCUMENT: "notices/486643600/document.pdf"},
            StorageError("Copy failed"),
        ]

        response = await api_client.post(
            "/api/batch/documents",
            data=_form(),
            files={"document": ("summons.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "partial"
        assert body["failureCount"] == 1
        assert body["results"][1]["status"] == "failed"
        assert body["results"][1]["error"] == "Copy failed"

    async def test_every_recipient_failed(self, api_client: AsyncClient, mock_document_store):
        mock_document_store.stage_attachments.return_value = {
            AttachmentField.DOCUMENT: f"batches/{BATCH_ID}/document.pdf"
        }
        mock_document_store.attach_to_notice.side_effect = StorageError("Copy failed")

        response = await api_client.post(
            "/api/batch/documents",
            data=_form(),
            files={"document": ("summons.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["status"] == "failed"
        assert body["failureCount"] == 2

    async def test_database_error_returns_batch_failed(
        self, api_client: AsyncClient, mock_db_session
    ):
        mock_db_session.execute.side_effect = [
            None,
            None,
            None,
            IntegrityError("INSERT INTO served_notices", {}, Exception("null value")),
        ]

        response = await api_client.post("/api/batch/documents", data=_form())

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "batch_failed"
        assert body["message"] == "Batch processing failed"
        assert body["detail"] == {"batchId": BATCH_ID, "status": "failed"}
        # Database details stay in the server log
        assert "null value" not in response.text
        mock_db_session.rollback.assert_awaited_once()
        mock_db_session.commit.assert_not_awaited()


# -----------------------------------------------------------------------------
# Batch status
# -----------------------------------------------------------------------------


class TestBatchStatus:
    """Tests for GET /api/batch/{batch_id}/status."""

    async def test_not_found(self, api_client: AsyncClient, mock_db_session):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db_session.execute.return_value = result

        response = await api_client.get("/api/batch/BATCH_missing/status")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_found(self, api_client: AsyncClient, mock_db_session):
        now = datetime.now(UTC)
        batch = BatchUpload(
            batch_id=BATCH_ID,
            server_address=SERVER_ADDRESS,
            recipient_count=2,
            status=BatchStatus.PARTIAL,
            batch_metadata={"caseNumber": "34-2501-001", "failureCount": 1},
            created_at=now,
            updated_at=now,
        )
        items = [
            NoticeBatchItem(
                batch_id=BATCH_ID,
                notice_id="486643600",
                recipient_address=ALICE,
                status=BatchItemStatus.SUCCESS,
                created_at=now,
            ),
            NoticeBatchItem(
                batch_id=BATCH_ID,
                notice_id="486643601",
                recipient_address=BOB,
                status=BatchItemStatus.FAILED,
                error_message="Copy failed",
                created_at=now,
            ),
        ]
        batch_result = MagicMock()
        batch_result.scalar_one_or_none.return_value = batch
        items_result = MagicMock()
        items_result.scalars.return_value.all.return_value = items
        mock_db_session.execute.side_effect = [batch_result, items_result]

        response = await api_client.get(f"/api/batch/{BATCH_ID}/status")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["batch"]["batchId"] == BATCH_ID
        assert body["batch"]["status"] == "partial"
        assert body["batch"]["metadata"]["caseNumber"] == "34-2501-001"
        assert [item["noticeId"] for item in body["items"]] == ["486643600", "486643601"]
        assert body["items"][1]["errorMessage"] == "Copy failed"
        assert body["summary"] == {"total": 2, "success": 1, "failed": 1}


# -----------------------------------------------------------------------------
# Diagnostics
# -----------------------------------------------------------------------------


class TestValidateEndpoint:
    """Tests for POST /api/batch/validate."""

    async def test_valid_body(self, api_client: AsyncClient, mock_db_session):
        response = await api_client.post(
            "/api/batch/validate",
            json={
                "serverAddress": SERVER_ADDRESS,
                "recipients": [ALICE, "not-an-address", BOB],
                "caseNumber": "34-2501-001",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["data"]["recipients"] == [ALICE, BOB]
        assert len(body["warnings"]) == 1
        mock_db_session.execute.assert_not_awaited()

    async def test_invalid_body(self, api_client: AsyncClient):
        response = await api_client.post("/api/batch/validate", json={"recipients": []})

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is False
        assert body["data"] is None
        assert len(body["errors"]) == 2


class TestDebugEndpoint:
    """Tests for POST /api/batch/debug."""

    async def test_probe_success(self, api_client: AsyncClient):
        report = {"success": True, "steps": [{"step": "tables", "ok": True}]}
        with patch(
            "blockserved.api.routers.batch.run_schema_probe",
            new_callable=AsyncMock,
            return_value=report,
        ):
            response = await api_client.post("/api/batch/debug")

        assert response.status_code == 200
        assert response.json()["steps"] == report["steps"]

    async def test_probe_failure(self, api_client: AsyncClient):
        report = {
            "success": False,
            "steps": [{"step": "insert_notice", "ok": False}],
            "failedAt": "insert_notice",
            "error": {"message": "value too long", "sqlstate": "22001"},
        }
        with patch(
            "blockserved.api.routers.batch.run_schema_probe",
            new_callable=AsyncMock,
            return_value=report,
        ):
            response = await api_client.post("/api/batch/debug")

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["failedAt"] == "insert_notice"
        assert body["error"]["sqlstate"] == "22001"


class TestBatchHealth:
    """Tests for GET /api/batch/health."""

    async def test_healthy(self, api_client: AsyncClient, mock_db_session):
        result = MagicMock()
        result.scalar_one.return_value = 1
        mock_db_session.execute.return_value = result

        response = await api_client.get("/api/batch/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["storage"] == "connected"

    async def test_database_unreachable(self, api_client: AsyncClient, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError(
            "SELECT 1", {}, Exception("connection refused")
        )

        response = await api_client.get("/api/batch/health")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["database"] == "disconnected"

    async def test_storage_unreachable_is_degraded(
        self, api_client: AsyncClient, mock_db_session, mock_document_store
    ):
        result = MagicMock()
        result.scalar_one.return_value = 1
        mock_db_session.execute.return_value = result
        mock_document_store.health_check.side_effect = StorageError(
            "Health check failed: timeout", bucket="blockserved", operation="health_check"
        )

        response = await api_client.get("/api/batch/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["database"] == "connected"
        assert body["storage"] == "unavailable"


class TestDocumentStoreDependency:
    """The store is built once per application and its bucket ensured."""

    @staticmethod
    def _request(settings):
        return SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(settings=settings)))

    def test_bucket_ensured_once(self, settings):
        request = self._request(settings)
        store = MagicMock()

        with patch.object(DocumentStore, "from_settings", return_value=store) as from_settings:
            assert get_document_store(request) is store
            assert get_document_store(request) is store

        from_settings.assert_called_once_with(settings.s3)
        store.ensure_bucket.assert_called_once_with()

    def test_bucket_failure_still_returns_store(self, settings):
        request = self._request(settings)
        store = MagicMock()
        store.ensure_bucket.side_effect = StorageError(
            "Failed to create bucket: denied", bucket="blockserved", operation="create_bucket"
        )

        with patch.object(DocumentStore, "from_settings", return_value=store):
            assert get_document_store(request) is store

        assert request.app.state.document_store is store
