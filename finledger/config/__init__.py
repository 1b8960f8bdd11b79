"""Configuration package."""

from finledger.config.settings import (
    AppSettings,
    DatabaseSettings,
    LocalStoreSettings,
    Settings,
    StorageMode,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LocalStoreSettings",
    "Settings",
    "StorageMode",
    "get_settings",
    "validate_all_settings",
]
