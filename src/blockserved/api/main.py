"""BlockServed API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.

The app is created using the factory pattern from blockserved.api.create_app().
"""

import logging

from blockserved.api import create_app
from blockserved.core.settings import get_settings_safe

logger = logging.getLogger(__name__)

# This is what uvicorn references: blockserved.api.main:app
# Without valid settings, routes load them on first use and fail there
app = create_app(get_settings_safe())


def run() -> None:
    """Run the API server using uvicorn.

    This function is called by the blockserved-api console script
    defined in pyproject.toml.
    """
    import uvicorn

    from blockserved.core.settings import get_settings

    # Fails fast (SystemExit) on invalid configuration
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting %s API on %s:%d (environment=%s)",
        settings.app_name,
        settings.api_host,
        settings.api_port,
        settings.environment.value,
    )

    uvicorn.run(
        "blockserved.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run()
