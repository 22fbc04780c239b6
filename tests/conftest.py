"""Global test fixtures for the MediVault test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from medivault.core.config import CoreSettings, clear_config_cache
from medivault.sharing import (
    InMemoryPersistence,
    PersistenceResourceDirectory,
    Resource,
    ResourceKind,
    SharingService,
)

# ============================================================================
# PostgreSQL Availability Detection
# ============================================================================


def _check_postgres_available() -> tuple[bool, str | None]:
    """Check if PostgreSQL is available for integration tests.

    Returns:
        Tuple of (is_available, error_message)
    """
    import psycopg2

    try:
        conn = psycopg2.connect(
            host=os.environ.get("MEDIVAULT_DB_HOST", "localhost"),
            port=int(os.environ.get("MEDIVAULT_DB_PORT", "5432")),
            dbname=os.environ.get("MEDIVAULT_DB_NAME", "medivault"),
            user=os.environ.get("MEDIVAULT_DB_USER", "medivault"),
            password=os.environ.get("MEDIVAULT_DB_PASSWORD", ""),
            connect_timeout=3,
        )
        conn.close()
        return True, None
    except psycopg2.OperationalError as e:
        return False, f"PostgreSQL connection failed: {e}"


POSTGRES_AVAILABLE, POSTGRES_ERROR = _check_postgres_available()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "requires_postgres: mark test as requiring a real PostgreSQL database")


def pytest_collection_modifyitems(config, items):
    """Skip tests that require PostgreSQL when no database is reachable."""
    if POSTGRES_AVAILABLE:
        return

    skip_postgres = pytest.mark.skip(reason=f"PostgreSQL not available: {POSTGRES_ERROR}")
    for item in items:
        if "requires_postgres" in item.keywords:
            item.add_marker(skip_postgres)


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_config():
    """Drop the cached process-wide config around each test."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture(autouse=True)
def reset_db_pool():
    """Reset the connection pool singleton before each test."""
    from medivault.db import pool

    pool.ConnectionPool._instance = None
    yield
    pool.ConnectionPool._instance = None


@pytest.fixture
def clean_env(monkeypatch):
    """Remove MEDIVAULT_ variables from the environment."""
    for key in list(os.environ):
        if key.startswith("MEDIVAULT_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def mock_psycopg2_pool():
    """Mock the psycopg2 connection pool."""
    mock_conn = MagicMock()
    mock_cursor = MagicMock()
    mock_pool = MagicMock()

    mock_conn.cursor.return_value = mock_cursor
    mock_cursor.__enter__ = MagicMock(return_value=mock_cursor)
    mock_cursor.__exit__ = MagicMock(return_value=False)

    mock_pool.getconn.return_value = mock_conn
    mock_pool.putconn = MagicMock()
    mock_pool.closeall = MagicMock()

    with patch("medivault.db.pool.psycopg2_pool.ThreadedConnectionPool") as mock_pool_class:
        mock_pool_class.return_value = mock_pool
        yield {
            "pool_class": mock_pool_class,
            "pool": mock_pool,
            "connection": mock_conn,
            "cursor": mock_cursor,
        }


# ============================================================================
# Sharing Fixtures
# ============================================================================

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Controllable time source passed to sharing components."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(clean_env) -> CoreSettings:
    """Default settings, isolated from the environment and any .env file."""
    return CoreSettings(_env_file=None)


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def directory(persistence) -> PersistenceResourceDirectory:
    return PersistenceResourceDirectory(persistence)


@pytest.fixture
def add_resource(directory, clock):
    """Factory storing an owned resource; each call is one minute newer."""
    counter = {"n": 0}

    def _add(
        owner_id: str,
        kind: ResourceKind = ResourceKind.HEALTH_RECORD,
        resource_id: str | None = None,
        **payload,
    ) -> Resource:
        counter["n"] += 1
        resource = Resource(
            id=resource_id or f"{kind.value}-{counter['n']}",
            owner_id=owner_id,
            kind=kind,
            created_at=clock() + timedelta(minutes=counter["n"]),
            payload=payload or {"title": f"{kind.value} {counter['n']}"},
        )
        return directory.add_resource(resource)

    return _add


@pytest.fixture
def service(persistence, directory, settings, clock) -> SharingService:
    return SharingService(persistence, resources=directory, settings=settings, clock=clock)
