"""Fixtures for the HTTP API tests."""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from medivault.server.app import create_app
from medivault.server.auth import create_access_token
from medivault.server.config import ServerSettings, clear_settings_cache
from medivault.sharing import SharingService

TEST_SECRET = "test-secret-" + "x" * 32


@pytest.fixture(autouse=True)
def reset_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def server_settings(clean_env) -> ServerSettings:
    return ServerSettings(_env_file=None, jwt_secret=TEST_SECRET, storage_backend="memory")


@pytest.fixture
def api_service(persistence, directory, server_settings, clock) -> SharingService:
    return SharingService(persistence, resources=directory, settings=server_settings, clock=clock)


@pytest.fixture
def app(api_service, server_settings):
    return create_app(service=api_service, settings=server_settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(server_settings):
    """Build Authorization headers for a user id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, server_settings)}"}

    return _headers
