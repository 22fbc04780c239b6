# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Migration framework for MediVault.

Provides sequential, versioned database migrations with:
- Auto-discovery from a migrations directory
- State tracking in a `_migrations` table
- Up/down support with checksums for drift detection
- Dry-run mode

Each migration file must define:
    version: str          e.g. "001"
    description: str      human-readable name
    up(conn) -> None      apply migration (receives psycopg2 connection)
    down(conn) -> None    rollback migration

Usage:
    runner = MigrationRunner(migrations_dir="/path/to/migrations")
    runner.up()            # apply all pending
    runner.down()          # rollback the latest
    runner.status()        # list applied/pending
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from types import ModuleType
from typing import Any

import psycopg2
from psycopg2.extras import RealDictCursor

from ..core.config import get_config
from ..core.exceptions import DatabaseException

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "_migrations"

# Shipped inside the package as data files
DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


@dataclass
class MigrationInfo:
    """Metadata about a discovered migration."""

    version: str
    description: str
    checksum: str
    file_path: Path
    module: ModuleType

    def __lt__(self, other: MigrationInfo) -> bool:
        return self.version < other.version


@dataclass
class AppliedMigration:
    """Record of an applied migration from the DB."""

    version: str
    description: str
    checksum: str
    applied_at: datetime


@dataclass
class MigrationStatus:
    """Status of a single migration: applied, pending, or checksum mismatch."""

    version: str
    description: str
    state: str  # "applied", "pending", "checksum_mismatch"
    applied_at: datetime | None = None
    file_checksum: str | None = None
    db_checksum: str | None = None


class MigrationRunner:
    """Discovers, tracks, and applies database migrations.

    Args:
        migrations_dir: Path to directory containing NNN_description.py files.
            Defaults to MEDIVAULT_MIGRATIONS_DIR, then the packaged migrations.
        connection_factory: Callable returning a psycopg2 connection. The
            connection is closed after use. If None, the shared pool is used.
    """

    def __init__(
        self,
        migrations_dir: str | Path | None = None,
        connection_factory: Callable[[], Any] | None = None,
    ):
        if migrations_dir is None:
            migrations_dir = get_config().migrations_dir or DEFAULT_MIGRATIONS_DIR
        self.migrations_dir = Path(migrations_dir)
        self._connection_factory = connection_factory
        self._migrations: list[MigrationInfo] | None = None

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_connection(self) -> Any:
        if self._connection_factory:
            return self._connection_factory()
        from .pool import get_connection

        return get_connection()

    def _put_connection(self, conn: Any) -> None:
        if self._connection_factory:
            conn.close()
            return
        from .pool import put_connection

        put_connection(conn)

    # ------------------------------------------------------------------
    # Migration discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _compute_checksum(file_path: Path) -> str:
        """Compute SHA-256 checksum of a migration file."""
        return hashlib.sha256(file_path.read_bytes()).hexdigest()[:16]

    @staticmethod
    def _load_module(file_path: Path) -> ModuleType:
        """Dynamically load a Python migration module."""
        module_name = f"medivault_migration_{file_path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise ValueError(f"Cannot load migration: {file_path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def discover(self) -> list[MigrationInfo]:
        """Discover all migration files in migrations_dir, sorted by version."""
        if self._migrations is not None:
            return self._migrations

        if not self.migrations_dir.is_dir():
            logger.warning("Migrations directory not found: %s", self.migrations_dir)
            self._migrations = []
            return []

        migrations: list[MigrationInfo] = []
        for path in sorted(self.migrations_dir.glob("*.py")):
            if path.name.startswith("__"):
                continue
            parts = path.stem.split("_", 1)
            if len(parts) < 2 or not parts[0].isdigit():
                logger.debug("Skipping non-migration file: %s", path.name)
                continue

            module = self._load_module(path)
            for attr in ("version", "description", "up", "down"):
                if not hasattr(module, attr):
                    raise ValueError(f"Migration {path.name} missing required attribute: {attr}")

            migrations.append(
                MigrationInfo(
                    version=module.version,
                    description=module.description,
                    checksum=self._compute_checksum(path),
                    file_path=path,
                    module=module,
                )
            )

        migrations.sort()
        self._migrations = migrations
        return migrations

    # ------------------------------------------------------------------
    # State tracking
    # ------------------------------------------------------------------

    def _ensure_table(self, conn: Any) -> None:
        cur = conn.cursor()
        try:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                    version TEXT PRIMARY KEY,
                    description TEXT NOT NULL,
                    checksum TEXT NOT NULL,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            conn.commit()
        finally:
            cur.close()

    def _get_applied(self, conn: Any) -> list[AppliedMigration]:
        self._ensure_table(conn)
        cur = conn.cursor(cursor_factory=RealDictCursor)
        try:
            cur.execute(f"SELECT version, description, checksum, applied_at FROM {MIGRATIONS_TABLE} ORDER BY version")
            return [
                AppliedMigration(
                    version=row["version"],
                    description=row["description"],
                    checksum=row["checksum"],
                    applied_at=row["applied_at"],
                )
                for row in cur.fetchall()
            ]
        finally:
            cur.close()

    def _record_applied(self, conn: Any, migration: MigrationInfo) -> None:
        cur = conn.cursor()
        try:
            cur.execute(
                f"INSERT INTO {MIGRATIONS_TABLE} (version, description, checksum) VALUES (%s, %s, %s)",
                (migration.version, migration.description, migration.checksum),
            )
        finally:
            cur.close()

    def _remove_applied(self, conn: Any, version: str) -> None:
        cur = conn.cursor()
        try:
            cur.execute(f"DELETE FROM {MIGRATIONS_TABLE} WHERE version = %s", (version,))
        finally:
            cur.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def status(self) -> list[MigrationStatus]:
        """Return status of all migrations (applied/pending/checksum_mismatch)."""
        migrations = self.discover()
        conn = self._get_connection()
        try:
            applied = {m.version: m for m in self._get_applied(conn)}
        finally:
            self._put_connection(conn)

        result: list[MigrationStatus] = []
        for m in migrations:
            db_record = applied.get(m.version)
            if db_record is None:
                result.append(MigrationStatus(m.version, m.description, "pending", file_checksum=m.checksum))
                continue
            state = "checksum_mismatch" if db_record.checksum != m.checksum else "applied"
            result.append(
                MigrationStatus(
                    version=m.version,
                    description=m.description,
                    state=state,
                    applied_at=db_record.applied_at,
                    file_checksum=m.checksum,
                    db_checksum=db_record.checksum,
                )
            )
        return result

    def up(self, *, target: str | None = None, dry_run: bool = False) -> list[str]:
        """Apply pending migrations, optionally up to a target version.

        Args:
            target: Stop after applying this version (inclusive). None = apply all.
            dry_run: If True, only report what would be applied without executing.

        Returns:
            List of applied version strings.
        """
        migrations = self.discover()
        conn = self._get_connection()
        applied_versions: list[str] = []

        try:
            applied = {m.version for m in self._get_applied(conn)}
            to_apply = [m for m in migrations if m.version not in applied]
            if target:
                to_apply = [m for m in to_apply if m.version <= target]

            if not to_apply:
                logger.info("No pending migrations to apply.")
                return []

            for migration in to_apply:
                if dry_run:
                    logger.info("[DRY RUN] Would apply: %s %s", migration.version, migration.description)
                    applied_versions.append(migration.version)
                    continue

                logger.info("Applying migration %s: %s", migration.version, migration.description)
                try:
                    migration.module.up(conn)
                    self._record_applied(conn, migration)
                    conn.commit()
                except psycopg2.Error as e:
                    conn.rollback()
                    logger.error("Failed to apply migration %s: %s", migration.version, e)
                    raise DatabaseException(f"Migration {migration.version} failed: {e}") from e
                applied_versions.append(migration.version)

            return applied_versions
        finally:
            self._put_connection(conn)

    def down(self, *, target: str | None = None, dry_run: bool = False) -> list[str]:
        """Rollback migrations, optionally down to a target version.

        Args:
            target: Roll back every version above this one. None = only the latest.
            dry_run: If True, only report what would be rolled back.

        Returns:
            List of rolled-back version strings.
        """
        migrations = {m.version: m for m in self.discover()}
        conn = self._get_connection()
        rolled_back: list[str] = []

        try:
            to_rollback = sorted((m.version for m in self._get_applied(conn)), reverse=True)
            if target:
                to_rollback = [v for v in to_rollback if v > target]
            else:
                to_rollback = to_rollback[:1]

            if not to_rollback:
                logger.info("No migrations to rollback.")
                return []

            for version in to_rollback:
                migration = migrations.get(version)
                if migration is None:
                    logger.warning("Migration file for version %s not found, skipping rollback", version)
                    continue

                if dry_run:
                    logger.info("[DRY RUN] Would rollback: %s %s", version, migration.description)
                    rolled_back.append(version)
                    continue

                logger.info("Rolling back migration %s: %s", version, migration.description)
                try:
                    migration.module.down(conn)
                    self._remove_applied(conn, version)
                    conn.commit()
                except psycopg2.Error as e:
                    conn.rollback()
                    logger.error("Failed to roll back migration %s: %s", version, e)
                    raise DatabaseException(f"Rollback of {version} failed: {e}") from e
                rolled_back.append(version)

            return rolled_back
        finally:
            self._put_connection(conn)
