"""Tests for server configuration (server/config.py)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from medivault.server.config import ServerSettings, get_settings

TEST_SECRET = "test-secret-" + "x" * 32


class TestServerSettings:
    def test_defaults(self, clean_env):
        settings = ServerSettings(_env_file=None)
        assert settings.host == "127.0.0.1"
        assert settings.port == 8430
        assert settings.storage_backend == "postgres"
        assert settings.jwt_algorithm == "HS256"
        assert settings.public_origin == "https://medivault.app"

    def test_secret_generated_for_local_use(self, clean_env):
        settings = ServerSettings(_env_file=None)
        assert settings.jwt_secret
        assert len(settings.jwt_secret) == 64

    def test_production_requires_secret(self, clean_env):
        with pytest.raises(ValidationError, match="JWT_SECRET is required"):
            ServerSettings(_env_file=None, production=True)

    def test_production_requires_long_secret(self, clean_env):
        with pytest.raises(ValidationError, match="at least 32"):
            ServerSettings(_env_file=None, host="0.0.0.0", jwt_secret="short")

    def test_production_with_secret(self, clean_env):
        settings = ServerSettings(_env_file=None, host="0.0.0.0", jwt_secret=TEST_SECRET)
        assert settings.jwt_secret == TEST_SECRET

    def test_storage_backend_validated(self, clean_env):
        assert ServerSettings(_env_file=None, storage_backend="MEMORY").storage_backend == "memory"
        with pytest.raises(ValidationError):
            ServerSettings(_env_file=None, storage_backend="sqlite")

    def test_env_prefix(self, clean_env):
        clean_env.setenv("MEDIVAULT_PORT", "9000")
        clean_env.setenv("MEDIVAULT_PUBLIC_ORIGIN", "https://share.example/")
        settings = ServerSettings(_env_file=None)
        assert settings.port == 9000
        assert settings.public_origin == "https://share.example"

    def test_get_settings_is_cached(self, clean_env):
        assert get_settings() is get_settings()
