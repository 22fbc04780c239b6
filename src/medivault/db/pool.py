# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Database connection utilities for MediVault.

Synchronous PostgreSQL access through psycopg2:
    - ConnectionPool with ThreadedConnectionPool
    - get_connection() / put_connection()
    - get_cursor() / get_connection_context() context managers

Pool size is configured via environment variables:
    - MEDIVAULT_DB_POOL_MIN: Minimum connections (default: 2)
    - MEDIVAULT_DB_POOL_MAX: Maximum connections (default: 20)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor

from ..core.config import get_config
from ..core.exceptions import DatabaseException

logger = logging.getLogger(__name__)


def get_connection_params() -> dict[str, Any]:
    """Get database connection parameters from config."""
    return dict(get_config().connection_params)


def get_pool_config() -> dict[str, int]:
    """Get connection pool configuration from config."""
    return get_config().pool_config


class ConnectionPool:
    """Thread-safe connection pool manager.

    Uses psycopg2's ThreadedConnectionPool for concurrent access.
    Pool is lazily initialized on first connection request.

    This is a singleton - use get_instance() to access.
    """

    _instance: ConnectionPool | None = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._pool: psycopg2_pool.ThreadedConnectionPool | None = None
        self._pool_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> ConnectionPool:
        """Get the singleton pool instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance. Useful for testing."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.close_all()
            cls._instance = None

    def _ensure_pool(self) -> psycopg2_pool.ThreadedConnectionPool:
        """Ensure pool is initialized, creating it if necessary."""
        if self._pool is None:
            with self._pool_lock:
                if self._pool is None:
                    conn_params = get_connection_params()
                    pool_config = get_pool_config()
                    try:
                        self._pool = psycopg2_pool.ThreadedConnectionPool(
                            minconn=pool_config["minconn"],
                            maxconn=pool_config["maxconn"],
                            **conn_params,
                        )
                        logger.info(
                            "Connection pool initialized: min=%d, max=%d",
                            pool_config["minconn"],
                            pool_config["maxconn"],
                        )
                    except psycopg2.OperationalError as e:
                        logger.error("Failed to create connection pool: %s", e)
                        raise DatabaseException(f"Failed to create connection pool: {e}") from e
        return self._pool

    def get_connection(self) -> Any:
        """Get a connection from the pool.

        Raises:
            DatabaseException: If pool is exhausted or connection fails
        """
        pool = self._ensure_pool()
        try:
            conn = pool.getconn()
            if conn is None:
                raise DatabaseException("Connection pool exhausted")
            return conn
        except psycopg2_pool.PoolError as e:
            logger.error("Pool error getting connection: %s", e)
            raise DatabaseException(f"Failed to get connection from pool: {e}") from e
        except psycopg2.Error as e:
            logger.error("Database error: %s", e)
            raise DatabaseException(f"Database error: {e}") from e

    def put_connection(self, conn: Any) -> None:
        """Return a connection to the pool."""
        if self._pool is not None and conn is not None:
            try:
                self._pool.putconn(conn)
            except psycopg2_pool.PoolError as e:
                logger.warning("Error returning connection to pool: %s", e)
                conn.close()

    def close_all(self) -> None:
        """Close all connections in the pool."""
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
                logger.info("Connection pool closed")


def get_connection() -> Any:
    """Get a database connection from the pool.

    Raises:
        DatabaseException: If connection fails
    """
    return ConnectionPool.get_instance().get_connection()


def put_connection(conn: Any) -> None:
    """Return a connection to the pool."""
    ConnectionPool.get_instance().put_connection(conn)


def close_pool() -> None:
    """Close the connection pool."""
    ConnectionPool.get_instance().close_all()


def _translate(conn: Any, e: psycopg2.Error) -> DatabaseException:
    """Roll back and wrap a psycopg2 error."""
    conn.rollback()
    if isinstance(e, psycopg2.IntegrityError):
        logger.error("Database integrity error: %s", e)
        return DatabaseException(f"Integrity constraint violation: {e}")
    if isinstance(e, psycopg2.ProgrammingError):
        logger.error("Database programming error: %s", e)
        return DatabaseException(f"SQL error: {e}")
    logger.error("Database error: %s", e)
    return DatabaseException(f"Database error: {e}")


@contextmanager
def get_cursor(dict_cursor: bool = True) -> Generator[Any, None, None]:
    """Context manager for a database cursor with commit/rollback.

    Usage:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM capability_tokens WHERE id = %s", (token_id,))
            row = cur.fetchone()

    Raises:
        DatabaseException: On database errors
    """
    conn = get_connection()
    cur = None
    try:
        cursor_factory = RealDictCursor if dict_cursor else None
        cur = conn.cursor(cursor_factory=cursor_factory)
        yield cur
        conn.commit()
    except psycopg2.Error as e:
        raise _translate(conn, e) from e
    except BaseException:
        conn.rollback()
        raise
    finally:
        if cur is not None:
            cur.close()
        put_connection(conn)


@contextmanager
def get_connection_context() -> Generator[Any, None, None]:
    """Context manager for a database connection with commit/rollback.

    Usage:
        with get_connection_context() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM token_scope_links WHERE token_id = %s", (token_id,))

    Raises:
        DatabaseException: On database errors
    """
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except psycopg2.Error as e:
        raise _translate(conn, e) from e
    except BaseException:
        conn.rollback()
        raise
    finally:
        put_connection(conn)


def check_connection() -> bool:
    """Check if database connection is working."""
    try:
        with get_cursor() as cur:
            cur.execute("SELECT 1")
            return True
    except DatabaseException:
        return False
