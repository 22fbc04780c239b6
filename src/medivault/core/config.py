# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Core configuration - centralized config for the medivault package.

All environment-based configuration should flow through this module.
This provides a single source of truth and consistent defaults.

Usage:
    from medivault.core.config import get_config
    config = get_config()

    # Access settings
    db_host = config.db_host
    origin = config.public_origin
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreSettings(BaseSettings):
    """Core configuration settings for MediVault.

    Settings can be configured via environment variables with the
    MEDIVAULT_ prefix, or from a local .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDIVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # DATABASE SETTINGS
    # ==========================================================================

    db_host: str = Field(default="localhost", description="Database host")
    db_port: int = Field(default=5432, description="Database port")
    db_name: str = Field(default="medivault", description="Database name")
    db_user: str = Field(default="medivault", description="Database user")
    db_password: str = Field(default="", description="Database password")

    # Connection pool settings
    db_pool_min: int = Field(default=2, description="Minimum pool connections")
    db_pool_max: int = Field(default=20, description="Maximum pool connections")
    migrations_dir: str | None = Field(
        default=None,
        description="Directory of NNN_name.py migrations (default: the ones shipped with the package)",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
    )

    # ==========================================================================
    # SHARING SETTINGS
    # ==========================================================================

    public_origin: str = Field(
        default="https://medivault.app",
        description="Origin embedded in shareable links and QR codes",
    )
    qr_renderer_url: str = Field(
        default="https://api.qrserver.com/v1/create-qr-code/",
        description="Third-party endpoint that renders a QR image for a URL",
    )
    default_ttl_hours: float = Field(
        default=24,
        description="Default lifetime of record and bundle share tokens",
    )

    @field_validator("public_origin")
    @classmethod
    def _strip_origin(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("default_ttl_hours")
    @classmethod
    def _positive_ttl(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("default_ttl_hours must be positive")
        return value

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def database_url(self) -> str:
        """Construct database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def connection_params(self) -> dict[str, str | int]:
        """Get database connection parameters dict."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }

    @property
    def pool_config(self) -> dict[str, int]:
        """Get connection pool configuration."""
        return {
            "minconn": self.db_pool_min,
            "maxconn": self.db_pool_max,
        }


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def set_config(config: CoreSettings) -> None:
    """Set the global configuration instance.

    Useful for testing or custom configuration.

    Args:
        config: The CoreSettings instance to use.
    """
    global _config
    _config = config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
