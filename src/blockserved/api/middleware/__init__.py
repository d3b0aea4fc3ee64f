"""BlockServed API middleware components.

This module provides middleware for:
- Request ID tracking for log correlation
- Consistent error response formatting
"""

from blockserved.api.middleware.errors import (
    APIError,
    BatchFailedError,
    ErrorHandlerMiddleware,
    NotFoundError,
    ValidationAPIError,
    build_error_response,
)
from blockserved.api.middleware.request_id import (
    REQUEST_ID_HEADER,
    RequestIDMiddleware,
    get_request_id,
)

__all__ = [
    "REQUEST_ID_HEADER",
    "APIError",
    "BatchFailedError",
    "ErrorHandlerMiddleware",
    "NotFoundError",
    "RequestIDMiddleware",
    "ValidationAPIError",
    "build_error_response",
    "get_request_id",
]
