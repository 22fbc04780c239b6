# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Persistence collaborator for the sharing core.

The core talks to storage through a small table-oriented protocol:
``get``, ``query``, ``insert``, ``update``, ``delete``, ``delete_where``
and ``transaction``. Rows are plain dicts. A ``where`` mapping matches a
column by equality, or by membership when the value is a list, tuple or set.

Implementations:
- InMemoryPersistence: thread-safe store for tests and local development
- PostgresPersistence: psycopg2-backed store using the shared pool
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from collections.abc import Callable, Generator, Iterable, Mapping, Sequence
from contextlib import AbstractContextManager, contextmanager
from typing import Any, Protocol

from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from ..core.exceptions import DatabaseException

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Where = Mapping[str, Any]

# =============================================================================
# SCHEMA
# =============================================================================

TOKENS_TABLE = "capability_tokens"
LINKS_TABLE = "token_scope_links"
EVENTS_TABLE = "access_events"
HEALTH_RECORDS_TABLE = "health_records"
MEDICATIONS_TABLE = "medications"
EMERGENCY_PROFILES_TABLE = "emergency_profiles"

_RESOURCE_COLUMNS = frozenset({"id", "owner_id", "payload", "created_at"})

TABLE_COLUMNS: dict[str, frozenset[str]] = {
    TOKENS_TABLE: frozenset(
        {
            "id",
            "owner_id",
            "scope_kind",
            "scope_refs",
            "created_at",
            "expires_at",
            "is_revoked",
            "is_active",
            "label",
            "include_emergency_profile",
        }
    ),
    LINKS_TABLE: frozenset({"id", "token_id", "resource_id", "owner_id", "created_at"}),
    EVENTS_TABLE: frozenset({"id", "token_id", "accessed_by", "accessed_at", "outcome", "seq"}),
    HEALTH_RECORDS_TABLE: _RESOURCE_COLUMNS,
    MEDICATIONS_TABLE: _RESOURCE_COLUMNS,
    EMERGENCY_PROFILES_TABLE: _RESOURCE_COLUMNS,
}

JSON_COLUMNS: dict[str, frozenset[str]] = {
    TOKENS_TABLE: frozenset({"scope_refs"}),
    HEALTH_RECORDS_TABLE: frozenset({"payload"}),
    MEDICATIONS_TABLE: frozenset({"payload"}),
    EMERGENCY_PROFILES_TABLE: frozenset({"payload"}),
}

# Store-assigned, strictly increasing per insert; breaks ties between equal timestamps
SEQUENCE_COLUMNS: dict[str, str] = {EVENTS_TABLE: "seq"}


def _is_membership(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _matches(row: Row, where: Where | None) -> bool:
    if not where:
        return True
    for column, expected in where.items():
        actual = row.get(column)
        if _is_membership(expected):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _order_columns(order_by: str | Sequence[str] | None) -> list[str]:
    if not order_by:
        return []
    return [order_by] if isinstance(order_by, str) else list(order_by)


def _has_empty_membership(where: Where | None) -> bool:
    return bool(where) and any(_is_membership(v) and not v for v in where.values())


class Persistence(Protocol):
    """Storage operations the sharing core depends on."""

    def get(self, table: str, id: str) -> Row | None: ...

    def query(
        self,
        table: str,
        where: Where | None = None,
        order_by: str | Sequence[str] | None = None,
        descending: bool = False,
    ) -> list[Row]: ...

    def insert(self, table: str, row: Row) -> Row: ...

    def update(self, table: str, id: str, patch: Row) -> Row | None: ...

    def delete(self, table: str, id: str) -> bool: ...

    def delete_where(self, table: str, where: Where) -> int: ...

    def transaction(self) -> AbstractContextManager[Any]: ...


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================


class InMemoryPersistence:
    """Thread-safe in-memory store.

    Rows are deep-copied on the way in and out, so callers never share
    mutable state with the store. ``transaction()`` holds the store lock
    and restores a snapshot if the block raises.
    """

    def __init__(self, tables: Iterable[str] | None = None):
        self._lock = threading.RLock()
        self._tables: dict[str, dict[str, Row]] = {name: {} for name in (tables or TABLE_COLUMNS)}
        self._sequence = itertools.count(1)

    def _table(self, table: str) -> dict[str, Row]:
        try:
            return self._tables[table]
        except KeyError:
            raise DatabaseException(f"Unknown table: {table}") from None

    def get(self, table: str, id: str) -> Row | None:
        with self._lock:
            row = self._table(table).get(id)
            return copy.deepcopy(row) if row is not None else None

    def query(
        self,
        table: str,
        where: Where | None = None,
        order_by: str | Sequence[str] | None = None,
        descending: bool = False,
    ) -> list[Row]:
        columns = _order_columns(order_by)
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._table(table).values() if _matches(r, where)]
        if columns:
            rows.sort(key=lambda r: tuple(r[c] for c in columns), reverse=descending)
        return rows

    def insert(self, table: str, row: Row) -> Row:
        if "id" not in row:
            raise DatabaseException(f"Row for {table} has no id")
        with self._lock:
            rows = self._table(table)
            if row["id"] in rows:
                raise DatabaseException(f"Integrity constraint violation: duplicate id in {table}")
            stored = copy.deepcopy(dict(row))
            seq_column = SEQUENCE_COLUMNS.get(table)
            if seq_column and stored.get(seq_column) is None:
                stored[seq_column] = next(self._sequence)
            rows[row["id"]] = stored
            return copy.deepcopy(rows[row["id"]])

    def update(self, table: str, id: str, patch: Row) -> Row | None:
        with self._lock:
            row = self._table(table).get(id)
            if row is None:
                return None
            row.update(copy.deepcopy({k: v for k, v in patch.items() if k != "id"}))
            return copy.deepcopy(row)

    def delete(self, table: str, id: str) -> bool:
        with self._lock:
            return self._table(table).pop(id, None) is not None

    def delete_where(self, table: str, where: Where) -> int:
        if not where:
            raise DatabaseException("delete_where requires a non-empty filter")
        with self._lock:
            rows = self._table(table)
            doomed = [key for key, row in rows.items() if _matches(row, where)]
            for key in doomed:
                del rows[key]
            return len(doomed)

    @contextmanager
    def transaction(self) -> Generator[InMemoryPersistence, None, None]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield self
            except BaseException:
                self._tables = snapshot
                raise

    def count(self, table: str) -> int:
        """Number of rows in a table."""
        with self._lock:
            return len(self._table(table))

    def clear(self) -> None:
        """Drop every row from every table."""
        with self._lock:
            for rows in self._tables.values():
                rows.clear()


# =============================================================================
# POSTGRESQL IMPLEMENTATION
# =============================================================================


class PostgresPersistence:
    """psycopg2-backed store.

    Table and column names are checked against TABLE_COLUMNS and composed
    with ``psycopg2.sql.Identifier``; values always travel as parameters.
    Inside ``transaction()`` every call on the same thread reuses one pinned
    connection, committed or rolled back when the block exits.

    Args:
        cursor_context: Context manager factory yielding a dict cursor that
            commits on exit. Defaults to ``medivault.db.get_cursor``.
        connection_context: Context manager factory yielding a connection
            that commits on exit. Defaults to
            ``medivault.db.get_connection_context``.
    """

    def __init__(
        self,
        cursor_context: Callable[[], AbstractContextManager[Any]] | None = None,
        connection_context: Callable[[], AbstractContextManager[Any]] | None = None,
    ):
        if cursor_context is None or connection_context is None:
            from ..db.pool import get_connection_context, get_cursor

            cursor_context = cursor_context or get_cursor
            connection_context = connection_context or get_connection_context
        self._cursor_context = cursor_context
        self._connection_context = connection_context
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check(table: str, columns: Iterable[str] | None = None) -> None:
        allowed = TABLE_COLUMNS.get(table)
        if allowed is None:
            raise DatabaseException(f"Unknown table: {table}")
        for column in columns or ():
            if column not in allowed:
                raise DatabaseException(f"Unknown column {column} for table {table}")

    @staticmethod
    def _adapt(table: str, row: Row) -> Row:
        json_columns = JSON_COLUMNS.get(table, frozenset())
        return {k: Json(v) if k in json_columns and v is not None else v for k, v in row.items()}

    @staticmethod
    def _where_clause(where: Where | None) -> tuple[sql.Composable, list[Any]]:
        if not where:
            return sql.SQL(""), []
        parts: list[sql.Composable] = []
        params: list[Any] = []
        for column, value in where.items():
            if _is_membership(value):
                parts.append(sql.SQL("{} = ANY(%s)").format(sql.Identifier(column)))
                params.append(list(value))
            elif value is None:
                parts.append(sql.SQL("{} IS NULL").format(sql.Identifier(column)))
            else:
                parts.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
                params.append(value)
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(parts), params

    @contextmanager
    def _cursor(self) -> Generator[Any, None, None]:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            with self._cursor_context() as cur:
                yield cur
            return
        cur = conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cur
        finally:
            cur.close()

    # ------------------------------------------------------------------
    # Persistence protocol
    # ------------------------------------------------------------------

    def get(self, table: str, id: str) -> Row | None:
        self._check(table)
        query = sql.SQL("SELECT * FROM {} WHERE {} = %s").format(sql.Identifier(table), sql.Identifier("id"))
        with self._cursor() as cur:
            cur.execute(query, (id,))
            row = cur.fetchone()
        return dict(row) if row else None

    def query(
        self,
        table: str,
        where: Where | None = None,
        order_by: str | Sequence[str] | None = None,
        descending: bool = False,
    ) -> list[Row]:
        order_columns = _order_columns(order_by)
        self._check(table, [*(where or ()), *order_columns])
        if _has_empty_membership(where):
            return []

        clause, params = self._where_clause(where)
        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(table)) + clause
        if order_columns:
            direction = sql.SQL(" DESC") if descending else sql.SQL(" ASC")
            ordering = sql.SQL(", ").join(sql.Identifier(c) + direction for c in order_columns)
            query = query + sql.SQL(" ORDER BY ") + ordering
        with self._cursor() as cur:
            cur.execute(query, params)
            return [dict(r) for r in cur.fetchall()]

    def insert(self, table: str, row: Row) -> Row:
        self._check(table, row)
        adapted = self._adapt(table, row)
        columns = list(adapted)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        with self._cursor() as cur:
            cur.execute(query, [adapted[c] for c in columns])
            return dict(cur.fetchone())

    def update(self, table: str, id: str, patch: Row) -> Row | None:
        patch = {k: v for k, v in patch.items() if k != "id"}
        self._check(table, patch)
        if not patch:
            return self.get(table, id)
        adapted = self._adapt(table, patch)
        assignments = sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in adapted)
        query = sql.SQL("UPDATE {} SET {} WHERE {} = %s RETURNING *").format(
            sql.Identifier(table), assignments, sql.Identifier("id")
        )
        with self._cursor() as cur:
            cur.execute(query, [*adapted.values(), id])
            row = cur.fetchone()
        return dict(row) if row else None

    def delete(self, table: str, id: str) -> bool:
        self._check(table)
        query = sql.SQL("DELETE FROM {} WHERE {} = %s").format(sql.Identifier(table), sql.Identifier("id"))
        with self._cursor() as cur:
            cur.execute(query, (id,))
            return cur.rowcount > 0

    def delete_where(self, table: str, where: Where) -> int:
        if not where:
            raise DatabaseException("delete_where requires a non-empty filter")
        self._check(table, where)
        if _has_empty_membership(where):
            return 0
        clause, params = self._where_clause(where)
        with self._cursor() as cur:
            cur.execute(sql.SQL("DELETE FROM {}").format(sql.Identifier(table)) + clause, params)
            return cur.rowcount

    @contextmanager
    def transaction(self) -> Generator[PostgresPersistence, None, None]:
        if getattr(self._local, "conn", None) is not None:
            yield self
            return
        with self._connection_context() as conn:
            self._local.conn = conn
            try:
                yield self
            finally:
                self._local.conn = None
