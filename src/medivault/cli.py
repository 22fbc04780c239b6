# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""MediVault command line.

Provides:
  medivault serve [--host HOST] [--port PORT] [--memory]
  medivault migrate up [--to VERSION] [--dry-run]
  medivault migrate down [--to VERSION] [--dry-run]
  medivault migrate status
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from .core.exceptions import MediVaultException
from .core.logging import configure_logging

logger = logging.getLogger(__name__)


# =============================================================================
# SERVE
# =============================================================================


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API under uvicorn."""
    import uvicorn

    from .server.app import create_app
    from .server.config import ServerSettings

    overrides: dict = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.memory:
        overrides["storage_backend"] = "memory"

    try:
        settings = ServerSettings(**overrides)
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        return 1

    logger.info("Starting MediVault sharing API on %s:%s", settings.host, settings.port)
    uvicorn.run(
        create_app(settings=settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


# =============================================================================
# MIGRATE
# =============================================================================


def _make_runner():
    from .db.migrations import MigrationRunner

    return MigrationRunner()


def cmd_migrate_up(args: argparse.Namespace) -> int:
    """Apply pending migrations."""
    runner = _make_runner()
    try:
        applied = runner.up(target=args.to, dry_run=args.dry_run)
    except MediVaultException as e:
        print(f"❌ Migration failed: {e.message}", file=sys.stderr)
        return 1
    if not applied:
        print("✅ No pending migrations.")
        return 0
    prefix = "[DRY RUN] " if args.dry_run else ""
    print(f"{prefix}Applied {len(applied)} migration(s):")
    for version in applied:
        print(f"  ✓ {version}")
    return 0


def cmd_migrate_down(args: argparse.Namespace) -> int:
    """Rollback migrations."""
    runner = _make_runner()
    try:
        rolled_back = runner.down(target=args.to, dry_run=args.dry_run)
    except MediVaultException as e:
        print(f"❌ Rollback failed: {e.message}", file=sys.stderr)
        return 1
    if not rolled_back:
        print("✅ Nothing to rollback.")
        return 0
    prefix = "[DRY RUN] " if args.dry_run else ""
    print(f"{prefix}Rolled back {len(rolled_back)} migration(s):")
    for version in rolled_back:
        print(f"  ↩ {version}")
    return 0


def cmd_migrate_status(args: argparse.Namespace) -> int:
    """Show applied and pending migrations."""
    runner = _make_runner()
    try:
        statuses = runner.status()
    except MediVaultException as e:
        print(f"❌ Could not read migration status: {e.message}", file=sys.stderr)
        return 1
    if not statuses:
        print("No migrations found.")
        return 0

    icons = {"applied": "✓", "pending": "·", "checksum_mismatch": "!"}
    for s in statuses:
        applied_at = s.applied_at.isoformat() if s.applied_at else ""
        print(f"  {icons.get(s.state, '?')} {s.version}  {s.description:<32} {s.state:<18} {applied_at}")
    if any(s.state == "checksum_mismatch" for s in statuses):
        print("⚠️  Some applied migrations changed on disk since they ran.", file=sys.stderr)
        return 1
    return 0


# =============================================================================
# PARSER
# =============================================================================


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="medivault",
        description="Capability-token sharing of patient health records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  medivault migrate up                 Apply pending schema migrations
  medivault migrate status             Show migration state
  medivault serve --port 8430          Run the sharing API
  medivault serve --memory             Run against in-memory storage
        """,
    )
    parser.add_argument("--log-level", help="Override MEDIVAULT_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to bind to")
    serve_parser.add_argument("--memory", action="store_true", help="Use in-memory storage (development only)")
    serve_parser.set_defaults(func=cmd_serve)

    migrate_parser = subparsers.add_parser("migrate", help="Database migration management")
    migrate_subparsers = migrate_parser.add_subparsers(dest="migrate_command", required=True)

    migrate_up = migrate_subparsers.add_parser("up", help="Apply pending migrations")
    migrate_up.add_argument("--to", help="Apply up to this version (inclusive)")
    migrate_up.add_argument("--dry-run", action="store_true", help="Show what would be applied")
    migrate_up.set_defaults(func=cmd_migrate_up)

    migrate_down = migrate_subparsers.add_parser("down", help="Rollback migrations")
    migrate_down.add_argument("--to", help="Rollback to this version (it stays applied)")
    migrate_down.add_argument("--dry-run", action="store_true", help="Show what would be rolled back")
    migrate_down.set_defaults(func=cmd_migrate_down)

    migrate_status = migrate_subparsers.add_parser("status", help="Show migration status")
    migrate_status.set_defaults(func=cmd_migrate_status)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
