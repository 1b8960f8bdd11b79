"""
Configuration Management for the Ledger Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which backend is in use and where its data lives,
and ensures configuration is validated at startup.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageMode(str, Enum):
    """Which ledger backend serves requests."""
    SERVER = "server"
    LOCAL = "local"


class DatabaseSettings(BaseSettings):
    """Server-side relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///finledger.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        if "://" not in v:
            raise ValueError(f"Not a database URL: {v}")
        return v


class LocalStoreSettings(BaseSettings):
    """Local-only (single user, on-device) store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_LOCAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    data_path: Optional[Path] = Field(
        default=None,
        description="JSON file holding the local ledger. Memory only when unset."
    )
    user_id: str = Field(
        default="local_user",
        min_length=1,
        description="Implicit owner of every local record"
    )

    @field_validator('data_path')
    @classmethod
    def expand_data_path(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    storage_mode: StorageMode = Field(
        default=StorageMode.SERVER,
        description="Backend used when none is requested explicitly"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def local_store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus ``<name>_error`` entries
    for the sections that failed. Useful for startup checks.
    """
    results: dict[str, object] = {}

    settings = get_settings()

    sections = {
        "database": lambda: settings.database,
        "local_store": lambda: settings.local_store,
        "app": lambda: settings.app,
    }
    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
