# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Capability token model for MediVault sharing.

A capability token is a bearer secret: whoever holds the id can read the
scope it is bound to, within its validity window. Tokens come in three
scope kinds sharing one state machine:

- single_record: one health record, time-limited
- record_set: a static bundle of records, time-limited
- live_profile: the owner's whole current profile, no expiry, toggled on/off

Share links embed the token id and are reproduced bit-exact so any QR
renderer turns them into the same image.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from urllib.parse import quote

# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_PUBLIC_ORIGIN = "https://medivault.app"
DEFAULT_QR_RENDERER_URL = "https://api.qrserver.com/v1/create-qr-code/"

# 24 random bytes -> 192 bits of entropy, 32 URL-safe characters
TOKEN_ID_BYTES = 24

DEFAULT_TTL_HOURS = 24

LIVE_PROFILE_QR_SIZE = 300
DEFAULT_QR_SIZE = 200


class ScopeKind(str, Enum):
    """What a capability token grants access to."""

    SINGLE_RECORD = "single_record"
    RECORD_SET = "record_set"
    LIVE_PROFILE = "live_profile"

    @property
    def is_expiring(self) -> bool:
        """Whether tokens of this kind carry an expiry instead of an on/off switch."""
        return self is not ScopeKind.LIVE_PROFILE


class TokenState(str, Enum):
    """Verdict of the validity evaluator."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    INACTIVE = "inactive"


SHARE_PATH_PREFIXES: dict[ScopeKind, str] = {
    ScopeKind.SINGLE_RECORD: "shared-record",
    ScopeKind.RECORD_SET: "public-records",
    ScopeKind.LIVE_PROFILE: "live-profile",
}

DEFAULT_LABELS: dict[ScopeKind, str | None] = {
    ScopeKind.SINGLE_RECORD: None,
    ScopeKind.RECORD_SET: "My Medical Records",
    ScopeKind.LIVE_PROFILE: "My Live Medical Profile",
}


# =============================================================================
# TIME HELPERS
# =============================================================================


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def parse_datetime(value: datetime | str | None) -> datetime | None:
    """Parse a stored timestamp (datetime or ISO string) as aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return ensure_utc(value)


def generate_token_id() -> str:
    """Mint a new unguessable token id."""
    return secrets.token_urlsafe(TOKEN_ID_BYTES)


# =============================================================================
# TOKEN MODEL
# =============================================================================


@dataclass
class CapabilityToken:
    """A shareable grant of read access to an owner's resources.

    Attributes:
        id: Opaque unguessable identifier, embedded in the share link
        owner_id: Identity of the resource owner; never changes
        scope_kind: Which family of scope the token grants
        scope_refs: Resource ids bound at issuance (empty for live profiles)
        created_at: Issuance instant
        expires_at: Expiry instant, or None for non-expiring tokens
        is_revoked: Set by the owner; cleared only by restore
        is_active: On/off switch for non-expiring tokens
        label: Optional human-readable description
        include_emergency_profile: Live profiles only; whether the owner's
            emergency profile is part of the resolved scope
    """

    id: str
    owner_id: str
    scope_kind: ScopeKind
    created_at: datetime
    scope_refs: list[str] = field(default_factory=list)
    expires_at: datetime | None = None
    is_revoked: bool = False
    is_active: bool = True
    label: str | None = None
    include_emergency_profile: bool = True

    def __post_init__(self) -> None:
        self.scope_kind = ScopeKind(self.scope_kind)
        self.created_at = ensure_utc(self.created_at)
        if self.expires_at is not None:
            self.expires_at = ensure_utc(self.expires_at)

    @property
    def is_expiring(self) -> bool:
        return self.expires_at is not None

    def to_row(self) -> dict[str, Any]:
        """Serialize for the persistence layer."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "scope_kind": self.scope_kind.value,
            "scope_refs": list(self.scope_refs),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "is_revoked": self.is_revoked,
            "is_active": self.is_active,
            "label": self.label,
            "include_emergency_profile": self.include_emergency_profile,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> CapabilityToken:
        """Deserialize a persisted row; datetimes may be ISO strings."""
        created_at = parse_datetime(row["created_at"])
        if created_at is None:
            raise ValueError("capability token row is missing created_at")
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            scope_kind=ScopeKind(row["scope_kind"]),
            scope_refs=list(row.get("scope_refs") or []),
            created_at=created_at,
            expires_at=parse_datetime(row.get("expires_at")),
            is_revoked=bool(row.get("is_revoked", False)),
            is_active=bool(row.get("is_active", True)),
            label=row.get("label"),
            include_emergency_profile=bool(row.get("include_emergency_profile", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "scope_kind": self.scope_kind.value,
            "scope_refs": list(self.scope_refs),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_revoked": self.is_revoked,
            "is_active": self.is_active,
            "label": self.label,
            "include_emergency_profile": self.include_emergency_profile,
        }


@dataclass(frozen=True)
class AccessEvent:
    """One append-only record of a token being presented to the access gate.

    ``accessed_by`` is None for anonymous scans. ``outcome`` is the token
    state observed at access time, or ``"error"`` when resolving the scope
    failed after the token was found usable.
    """

    id: str
    token_id: str
    accessed_at: datetime
    accessed_by: str | None = None
    outcome: str = TokenState.ACTIVE.value

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token_id": self.token_id,
            "accessed_by": self.accessed_by,
            "accessed_at": self.accessed_at,
            "outcome": self.outcome,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AccessEvent:
        accessed_at = parse_datetime(row["accessed_at"])
        if accessed_at is None:
            raise ValueError("access event row is missing accessed_at")
        return cls(
            id=row["id"],
            token_id=row["token_id"],
            accessed_by=row.get("accessed_by"),
            accessed_at=accessed_at,
            outcome=row.get("outcome") or TokenState.ACTIVE.value,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token_id": self.token_id,
            "accessed_by": self.accessed_by,
            "accessed_at": self.accessed_at.isoformat(),
            "outcome": self.outcome,
        }


# =============================================================================
# SHARE LINKS
# =============================================================================


def build_share_url(scope_kind: ScopeKind | str, token_id: str, origin: str | None = None) -> str:
    """Build the link a QR code encodes for a token.

    Args:
        scope_kind: Scope kind of the token; selects the path prefix
        token_id: The token id to embed
        origin: Public origin of the web app; defaults to DEFAULT_PUBLIC_ORIGIN

    Returns:
        ``<origin>/<prefix>/<token_id>``
    """
    prefix = SHARE_PATH_PREFIXES[ScopeKind(scope_kind)]
    base = (origin or DEFAULT_PUBLIC_ORIGIN).rstrip("/")
    return f"{base}/{prefix}/{token_id}"


def qr_size_for(scope_kind: ScopeKind | str) -> int:
    """Pixel size of the rendered QR image for a scope kind."""
    if ScopeKind(scope_kind) is ScopeKind.LIVE_PROFILE:
        return LIVE_PROFILE_QR_SIZE
    return DEFAULT_QR_SIZE


def build_qr_image_url(
    share_url: str,
    size: int = DEFAULT_QR_SIZE,
    renderer_url: str | None = None,
) -> str:
    """Build the URL of a third-party QR renderer image for a share link."""
    base = renderer_url or DEFAULT_QR_RENDERER_URL
    return f"{base}?size={size}x{size}&data={quote(share_url, safe='')}"
