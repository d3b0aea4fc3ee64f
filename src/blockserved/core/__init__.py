"""BlockServed core module.

Shared components used across the API and the upload client:
- Configuration management
- Settings accessor
"""

from blockserved.core.config import (
    BatchSettings,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    S3Settings,
    Settings,
)
from blockserved.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "BatchSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "S3Settings",
    "Settings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
