# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""SharingService: one entry point wiring the sharing components together.

Collaborators are injected; nothing here reads module-level state. The
service adds the owner-side conveniences the web app needs on top of the
core components: per-record and whole-account share links, the permanent
live profile, and owner listings with share and QR image URLs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..core.config import CoreSettings
from .audit import AccessAuditor
from .errors import ValidationError
from .gate import AccessGate, AccessGrant
from .issuer import TTL, TokenIssuer
from .lifecycle import TokenLifecycle
from .persistence import TOKENS_TABLE, Persistence
from .resolver import ScopeResolver
from .resources import PersistenceResourceDirectory, ResourceDirectory, ResourceKind
from .tokens import (
    AccessEvent,
    CapabilityToken,
    ScopeKind,
    TokenState,
    build_qr_image_url,
    build_share_url,
    qr_size_for,
    utc_now,
)
from .validity import evaluate

logger = logging.getLogger(__name__)


@dataclass
class TokenSummary:
    """Owner-facing view of a token: metadata only, never resource contents."""

    token: CapabilityToken
    state: TokenState
    record_count: int
    share_url: str
    qr_image_url: str

    @property
    def is_expired(self) -> bool:
        return self.state is TokenState.EXPIRED

    def to_dict(self) -> dict[str, Any]:
        data = self.token.to_dict()
        data.update(
            {
                "state": self.state.value,
                "is_expired": self.is_expired,
                "record_count": self.record_count,
                "share_url": self.share_url,
                "qr_image_url": self.qr_image_url,
            }
        )
        return data


class SharingService:
    """Facade over issuer, gate, auditor and lifecycle manager.

    Args:
        persistence: Storage for tokens, links, events and resources
        resources: Resource lookup; defaults to one over ``persistence``
        settings: Sharing policy (public origin, QR renderer, default ttl)
        clock: Time source shared by every component
    """

    def __init__(
        self,
        persistence: Persistence,
        resources: ResourceDirectory | None = None,
        settings: CoreSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings if settings is not None else CoreSettings()
        self.persistence = persistence
        self.resources = resources if resources is not None else PersistenceResourceDirectory(persistence)
        self._clock = clock or utc_now

        self.issuer = TokenIssuer(
            persistence,
            self.resources,
            default_ttl=self.settings.default_ttl_hours,
            clock=self._clock,
        )
        self.resolver = ScopeResolver(persistence, self.resources)
        self.auditor = AccessAuditor(persistence, clock=self._clock)
        self.gate = AccessGate(persistence, self.resolver, self.auditor, clock=self._clock)
        self.lifecycle = TokenLifecycle(persistence, self.auditor, clock=self._clock)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def issue(
        self,
        owner_id: str,
        scope_kind: ScopeKind | str,
        scope_refs: Sequence[str] | None = None,
        ttl: TTL | None = None,
        label: str | None = None,
        include_emergency_profile: bool = True,
    ) -> CapabilityToken:
        return self.issuer.issue(
            owner_id,
            scope_kind,
            scope_refs=scope_refs,
            ttl=ttl,
            label=label,
            include_emergency_profile=include_emergency_profile,
        )

    def access_by_token(self, token_id: str, requestor_id: str | None = None) -> AccessGrant:
        return self.gate.access_by_token(token_id, requestor_id)

    def revoke(self, token_id: str, owner_id: str) -> CapabilityToken:
        return self.lifecycle.revoke(token_id, owner_id)

    def restore(self, token_id: str, owner_id: str, new_ttl_hours: float | None = None) -> CapabilityToken:
        hours = self.settings.default_ttl_hours if new_ttl_hours is None else new_ttl_hours
        return self.lifecycle.restore(token_id, owner_id, hours)

    def set_active(self, token_id: str, owner_id: str, active: bool) -> CapabilityToken:
        return self.lifecycle.set_active(token_id, owner_id, active)

    def delete(self, token_id: str, owner_id: str, purge_history: bool = True) -> None:
        self.lifecycle.delete(token_id, owner_id, purge_history=purge_history)

    def list_access_history(self, token_id: str, owner_id: str, limit: int | None = None) -> list[AccessEvent]:
        """Access events for a token the caller owns, most recent first."""
        token = self.lifecycle.load_owned(token_id, owner_id)
        return self.auditor.list_access_history(token.id, limit=limit)

    # ------------------------------------------------------------------
    # Owner conveniences
    # ------------------------------------------------------------------

    def share_record(
        self,
        owner_id: str,
        record_id: str,
        expiry_hours: float | None = None,
        label: str | None = None,
    ) -> TokenSummary:
        """Share one of the owner's health records for a limited time.

        Raises:
            ValidationError: The record does not exist or is not the owner's
        """
        found = self.resources.get_resources([record_id], ResourceKind.HEALTH_RECORD)
        if not found or found[0].owner_id != owner_id:
            raise ValidationError("record not found for this owner", field="record_id")
        token = self.issue(owner_id, ScopeKind.SINGLE_RECORD, [record_id], ttl=expiry_hours, label=label)
        return self.describe(token)

    def share_all_records(
        self,
        owner_id: str,
        label: str | None = None,
        expiry_hours: float | None = None,
    ) -> TokenSummary:
        """Bundle every health record the owner holds right now."""
        token = self.issue(owner_id, ScopeKind.RECORD_SET, None, ttl=expiry_hours, label=label)
        return self.describe(token)

    def get_live_profile(self, owner_id: str) -> TokenSummary | None:
        """The owner's live profile token, oldest first if several exist.

        Revoked live profiles are skipped: only restore clears a revocation
        and live profiles cannot be restored, so a revoked one is dead.
        """
        rows = self.persistence.query(
            TOKENS_TABLE,
            where={"owner_id": owner_id, "scope_kind": ScopeKind.LIVE_PROFILE.value},
            order_by="created_at",
        )
        rows = [row for row in rows if not row.get("is_revoked")]
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning("Owner has %d live profile tokens; using the oldest", len(rows))
        return self.describe(CapabilityToken.from_row(rows[0]))

    def get_or_create_live_profile(
        self,
        owner_id: str,
        include_emergency_profile: bool = True,
    ) -> tuple[TokenSummary, bool]:
        """Return the owner's live profile, issuing one if none exists.

        Check-then-issue: two concurrent first calls can both issue.

        Returns:
            (summary, created)
        """
        existing = self.get_live_profile(owner_id)
        if existing is not None:
            return existing, False
        token = self.issue(
            owner_id,
            ScopeKind.LIVE_PROFILE,
            include_emergency_profile=include_emergency_profile,
        )
        return self.describe(token), True

    def get_owned_token(self, token_id: str, owner_id: str) -> TokenSummary:
        """Token metadata for its owner. Does not read shared resources."""
        return self.describe(self.lifecycle.load_owned(token_id, owner_id))

    def list_owner_tokens(self, owner_id: str, scope_kind: ScopeKind | str | None = None) -> list[TokenSummary]:
        """Every token the owner issued, newest first."""
        where: dict[str, Any] = {"owner_id": owner_id}
        if scope_kind is not None:
            where["scope_kind"] = ScopeKind(scope_kind).value
        rows = self.persistence.query(TOKENS_TABLE, where=where, order_by="created_at", descending=True)
        now = self._clock()
        return [self.describe(CapabilityToken.from_row(row), now=now) for row in rows]

    def describe(self, token: CapabilityToken, now: datetime | None = None) -> TokenSummary:
        """Owner-facing summary with state, share link and QR image URL."""
        share_url = build_share_url(token.scope_kind, token.id, self.settings.public_origin)
        return TokenSummary(
            token=token,
            state=evaluate(token, now or self._clock()),
            record_count=self.resolver.count_bound(token),
            share_url=share_url,
            qr_image_url=build_qr_image_url(
                share_url,
                qr_size_for(token.scope_kind),
                self.settings.qr_renderer_url,
            ),
        )
