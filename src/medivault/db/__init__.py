# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""PostgreSQL access for MediVault: pooled connections and schema migrations."""

from .migrations import MigrationRunner, MigrationStatus
from .pool import (
    ConnectionPool,
    check_connection,
    close_pool,
    get_connection,
    get_connection_context,
    get_cursor,
    put_connection,
)

__all__ = [
    "ConnectionPool",
    "get_connection",
    "put_connection",
    "close_pool",
    "get_cursor",
    "get_connection_context",
    "check_connection",
    "MigrationRunner",
    "MigrationStatus",
]
