"""EUSign core module.

Shared components used across all services:
- Configuration management
- Logging setup
"""

from eusign.core.config import (
    ConfigValidationError,
    Environment,
    ProviderKind,
    ProviderSettings,
    Settings,
    StorageSettings,
)
from eusign.core.logging import configure_logging
from eusign.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigValidationError",
    "Environment",
    "ProviderKind",
    "ProviderSettings",
    "Settings",
    "StorageSettings",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
    "get_settings_safe",
]
