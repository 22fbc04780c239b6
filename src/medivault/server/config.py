# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Server configuration using pydantic-settings."""

from __future__ import annotations

import logging
import secrets
from importlib.metadata import PackageNotFoundError, version

from pydantic import Field, field_validator, model_validator
from pydantic_settings import SettingsConfigDict

from medivault.core.config import CoreSettings

logger = logging.getLogger(__name__)


def get_package_version() -> str:
    """Get the package version from installed metadata.

    Returns the version from pyproject.toml when installed,
    or a dev fallback when running from source without install.
    """
    try:
        return version("medivault-sharing")
    except PackageNotFoundError:
        return "0.0.0-dev"


class ServerSettings(CoreSettings):
    """Configuration for the MediVault sharing API.

    Inherits core settings (DB, logging, sharing policy) and adds HTTP,
    CORS and identity settings.

    Settings can be configured via environment variables with MEDIVAULT_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDIVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="127.0.0.1", description="Host to bind to")
    port: int = Field(default=8430, description="Port to bind to")

    storage_backend: str = Field(
        default="postgres",
        description="Token storage: 'postgres' or 'memory' (development only)",
    )

    # CORS settings
    allowed_origins: list[str] = Field(
        default=[],
        description="Allowed CORS origins. Empty = same-origin only. Set to ['*'] for development.",
    )

    # Identity: access tokens minted by the upstream auth provider
    jwt_secret: str | None = Field(
        default=None,
        description="Secret shared with the auth provider (REQUIRED in production - set MEDIVAULT_JWT_SECRET)",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_audience: str | None = Field(
        default=None,
        description="Expected 'aud' claim; not checked when unset",
    )

    server_name: str = Field(default="medivault-sharing", description="Server name")
    server_version: str = Field(default_factory=get_package_version, description="Server version")

    debug: bool = Field(
        default=False,
        description="Include exception details in 500 responses",
    )
    production: bool = Field(
        default=False,
        description="Force production mode (stricter security requirements)",
    )

    @field_validator("storage_backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("postgres", "memory"):
            raise ValueError("storage_backend must be 'postgres' or 'memory'")
        return value

    @model_validator(mode="after")
    def validate_production_settings(self) -> ServerSettings:
        """Require an explicit JWT secret outside local development."""
        is_production = self.host not in ("localhost", "127.0.0.1") or self.production

        if is_production:
            if not self.jwt_secret:
                raise ValueError(
                    "MEDIVAULT_JWT_SECRET is required in production mode. "
                    "Use the signing secret of the auth provider that issues access tokens."
                )
            if len(self.jwt_secret) < 32:
                raise ValueError("MEDIVAULT_JWT_SECRET must be at least 32 characters.")

        if not self.jwt_secret:
            logger.warning("Auto-generating JWT secret - only locally minted tokens will verify")
            object.__setattr__(self, "jwt_secret", secrets.token_hex(32))

        return self


# Global settings instance - lazy loaded
_settings: ServerSettings | None = None


def get_settings() -> ServerSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = ServerSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    global _settings
    _settings = None
