"""Shared configuration for the registry worker and services."""

from contract_registry.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    JobSettings,
    Settings,
    SMTPSettings,
)
from contract_registry.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "JobSettings",
    "SMTPSettings",
    "Settings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
