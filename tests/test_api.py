"""Tests for BlockServed API application structure.

Tests cover:
- App factory (create_app)
- Root health endpoint
- Request ID middleware
- Error handling middleware
- OpenAPI documentation endpoints
"""

import json
import uuid

import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient

from blockserved.api import create_app
from blockserved.api.middleware.errors import (
    APIError,
    BatchFailedError,
    NotFoundError,
    ValidationAPIError,
    build_error_response,
)
from blockserved.api.middleware.request_id import REQUEST_ID_HEADER, get_request_id
from blockserved.services import ids as ids_module


class TestAppFactory:
    """Tests for the create_app factory function."""

    def test_create_app_returns_fastapi_instance(self):
        app = create_app()
        assert isinstance(app, FastAPI)
        assert app.title == "BlockServed API"
        assert app.version == "0.1.0"

    def test_create_app_docs_urls(self):
        app = create_app()
        assert app.docs_url == "/api/docs"
        assert app.redoc_url == "/api/redoc"
        assert app.openapi_url == "/api/openapi.json"

    def test_create_app_stores_settings_in_state(self, settings):
        app = create_app(settings)
        assert app.state.settings is settings

    def test_create_app_without_settings(self):
        """Settings is None when not provided; routes load them lazily."""
        app = create_app()
        assert app.state.settings is None

    def test_create_app_configures_id_cache(self, settings, monkeypatch):
        monkeypatch.setattr(ids_module, "_default_generator", None)
        settings.batch.id_cache_size = 42

        create_app(settings)

        assert ids_module.get_id_generator().cache_size == 42

    def test_batch_routes_mounted(self):
        app = create_app()
        paths = {route.path for route in app.routes}
        assert "/api/batch/documents" in paths
        assert "/api/batch/{batch_id}/status" in paths
        assert "/api/batch/validate" in paths
        assert "/api/batch/debug" in paths
        assert "/api/batch/health" in paths


class TestHealthEndpoint:
    async def test_root_health(self, api_client: AsyncClient):
        response = await api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestRequestIDMiddleware:
    """Tests for the X-Request-ID middleware."""

    async def test_generated_request_id_is_uuid(self, api_client: AsyncClient):
        response = await api_client.get("/health")
        request_id = response.headers[REQUEST_ID_HEADER]
        assert str(uuid.UUID(request_id)) == request_id

    async def test_provided_request_id_is_preserved(self, api_client: AsyncClient):
        custom_id = "batch-upload-12345"
        response = await api_client.get("/health", headers={REQUEST_ID_HEADER: custom_id})
        assert response.headers[REQUEST_ID_HEADER] == custom_id

    async def test_different_requests_get_different_ids(self, api_client: AsyncClient):
        response1 = await api_client.get("/health")
        response2 = await api_client.get("/health")
        assert response1.headers[REQUEST_ID_HEADER] != response2.headers[REQUEST_ID_HEADER]

    async def test_error_response_carries_request_id(self, api_client: AsyncClient):
        custom_id = "failed-batch-42"
        response = await api_client.post(
            "/api/batch/documents",
            data={"serverAddress": "invalid"},
            headers={REQUEST_ID_HEADER: custom_id},
        )
        assert response.status_code == 400
        assert response.headers[REQUEST_ID_HEADER] == custom_id
        assert response.json()["request_id"] == custom_id

    def test_no_request_id_outside_request(self):
        assert get_request_id() is None


class TestErrorResponses:
    """Tests for error response middleware and helpers."""

    def test_build_error_response_basic(self):
        response = build_error_response(
            error="test_error",
            message="Test message",
            status_code=400,
        )
        assert response.status_code == 400
        body = json.loads(response.body.decode())
        assert body == {"error": "test_error", "message": "Test message"}

    def test_build_error_response_with_detail(self):
        response = build_error_response(
            error="validation_error",
            message="Validation failed",
            status_code=400,
            detail={"field": "document"},
        )
        body = json.loads(response.body.decode())
        assert body["detail"] == {"field": "document"}

    def test_api_error_exception(self):
        error = APIError(
            error="custom_error",
            message="Something went wrong",
            status_code=418,
            detail={"tea": "pot"},
        )
        assert error.error == "custom_error"
        assert error.message == "Something went wrong"
        assert error.status_code == 418
        assert error.detail == {"tea": "pot"}

    def test_not_found_error(self):
        error = NotFoundError(resource="Batch", identifier="BATCH_1")
        assert error.error == "not_found"
        assert error.status_code == 404
        assert error.message == "Batch not found: BATCH_1"

    def test_validation_api_error(self):
        error = ValidationAPIError(message="Batch validation failed", detail={"errors": []})
        assert error.error == "validation_error"
        assert error.status_code == 400

    def test_batch_failed_error(self):
        error = BatchFailedError("BATCH_1")
        assert error.error == "batch_failed"
        assert error.status_code == 500
        assert error.detail == {"batchId": "BATCH_1", "status": "failed"}

    async def test_unexpected_exception_returns_internal_error(self):
        app = create_app()
        router = APIRouter()

        @router.get("/boom")
        async def boom() -> None:
            msg = "unexpected"
            raise RuntimeError(msg)

        app.include_router(router)

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "internal_error"
        assert "unexpected" not in body["message"]
        assert REQUEST_ID_HEADER in response.headers


class TestOpenAPIDocumentation:
    """Tests for OpenAPI documentation endpoints."""

    async def test_openapi_json_available(self, api_client: AsyncClient):
        response = await api_client.get("/api/openapi.json")
        assert response.status_code == 200
        data = response.json()
        assert data["info"]["title"] == "BlockServed API"

    async def test_openapi_includes_batch_paths(self, api_client: AsyncClient):
        response = await api_client.get("/api/openapi.json")
        paths = response.json()["paths"]
        assert "/api/batch/documents" in paths
        assert "/api/batch/{batch_id}/status" in paths

    @pytest.mark.parametrize("path", ["/api/docs", "/api/redoc"])
    async def test_docs_pages(self, api_client: AsyncClient, path: str):
        response = await api_client.get(path)
        assert response.status_code == 200
