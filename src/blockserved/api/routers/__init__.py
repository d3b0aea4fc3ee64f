"""BlockServed API routers.

- batch: batch submission, status lookup and diagnostics
"""

from blockserved.api.routers.batch import router as batch_router

__all__ = [
    "batch_router",
]
