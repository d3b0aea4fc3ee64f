"""BlockServed API service.

FastAPI application providing:
- Batch submission of legal notices (multipart, single transaction per batch)
- Batch status lookup
- Validation dry-runs and schema diagnostics for operators

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blockserved.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from blockserved.api.routers import batch_router
from blockserved.services.ids import configure_id_generator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from blockserved.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "BlockServed API"
API_DESCRIPTION = """
Batch service of legal notices on TRON.

## Endpoints

- **/api/batch/documents** - Submit a batch (multipart form)
- **/api/batch/{batchId}/status** - Stored batch and per-recipient items
- **/api/batch/validate** - Validate a batch without storing it
- **/api/batch/debug**, **/api/batch/health** - Operational diagnostics

## Documentation

- OpenAPI spec: `/api/openapi.json`
- Swagger UI: `/api/docs`
"""


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    from blockserved.db import close_engine

    await close_engine()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    This factory function creates a fully configured FastAPI app with:
    - The batch router mounted under /api
    - Request ID middleware for log correlation
    - Error handling middleware for consistent JSON responses
    - CORS middleware for the browser client
    - OpenAPI documentation at /api/docs

    Args:
        settings: Optional Settings instance. If not provided, routes load
            settings from the environment on first use.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        app = create_app()

        # For testing
        settings = Settings(database=DatabaseSettings(url=...), s3=S3Settings(...))
        app = create_app(settings)
    """
    version = settings.app_version if settings else "0.1.0"

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )

    # Routes read settings from app state when present
    app.state.settings = settings

    if settings:
        configure_id_generator(settings.batch.id_cache_size)

    _add_middleware(app, settings)
    app.include_router(batch_router, prefix="/api")

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Liveness endpoint for container orchestration."""
        return {"status": "healthy"}

    logger.info("BlockServed API application created (version=%s)", version)

    return app


def _add_middleware(app: FastAPI, settings: Settings | None) -> None:
    """Add middleware to the application.

    The last middleware added is the outermost.
    """
    allowed_origins = ["http://localhost:3000", "http://localhost:8000"]
    if settings:
        allowed_origins = list(settings.cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Converts exceptions to JSON responses; runs inside the request ID context
    app.add_middleware(ErrorHandlerMiddleware)

    # Outermost: error responses carry the X-Request-ID header as well
    app.add_middleware(RequestIDMiddleware)
