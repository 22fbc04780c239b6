"""Migration 001: Capability token sharing schema.

Creates the owner resource tables (health records, medications, emergency
profiles), capability tokens with their scope links, and the append-only
access event log.
"""

version = "001"
description = "sharing_schema"

_STATEMENTS = [
    (
        "health records",
        """
        CREATE TABLE IF NOT EXISTS health_records (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
    ),
    (
        "medications",
        """
        CREATE TABLE IF NOT EXISTS medications (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
    ),
    (
        "emergency profiles",
        """
        CREATE TABLE IF NOT EXISTS emergency_profiles (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
    ),
    (
        "capability tokens",
        """
        CREATE TABLE IF NOT EXISTS capability_tokens (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            scope_kind TEXT NOT NULL
                CHECK (scope_kind IN ('single_record', 'record_set', 'live_profile')),
            scope_refs JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ,
            is_revoked BOOLEAN NOT NULL DEFAULT FALSE,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            label TEXT,
            include_emergency_profile BOOLEAN NOT NULL DEFAULT TRUE
        )
        """,
    ),
    (
        "scope links",
        """
        CREATE TABLE IF NOT EXISTS token_scope_links (
            id TEXT PRIMARY KEY,
            token_id TEXT NOT NULL REFERENCES capability_tokens(id) ON DELETE CASCADE,
            resource_id TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
    ),
    (
        "access events",
        """
        CREATE TABLE IF NOT EXISTS access_events (
            id TEXT PRIMARY KEY,
            token_id TEXT NOT NULL,
            accessed_by TEXT,
            accessed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            outcome TEXT NOT NULL DEFAULT 'active',
            seq BIGSERIAL NOT NULL
        )
        """,
    ),
    (
        "indexes",
        """
        CREATE INDEX IF NOT EXISTS idx_health_records_owner ON health_records (owner_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_medications_owner ON medications (owner_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_emergency_profiles_owner ON emergency_profiles (owner_id);
        CREATE INDEX IF NOT EXISTS idx_capability_tokens_owner ON capability_tokens (owner_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_token_scope_links_token ON token_scope_links (token_id);
        CREATE INDEX IF NOT EXISTS idx_access_events_token ON access_events (token_id, accessed_at DESC, seq DESC)
        """,
    ),
]


def up(conn) -> None:
    with conn.cursor() as cur:
        for _desc, sql in _STATEMENTS:
            cur.execute(sql)


def down(conn) -> None:
    with conn.cursor() as cur:
        cur.execute("DROP TABLE IF EXISTS access_events")
        cur.execute("DROP TABLE IF EXISTS token_scope_links")
        cur.execute("DROP TABLE IF EXISTS capability_tokens")
        cur.execute("DROP TABLE IF EXISTS emergency_profiles")
        cur.execute("DROP TABLE IF EXISTS medications")
        cur.execute("DROP TABLE IF EXISTS health_records")
