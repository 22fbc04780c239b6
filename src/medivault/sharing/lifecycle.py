# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Owner-only token state transitions: revoke, restore, toggle and delete.

Expiring tokens (single record, record bundle):

    Active --revoke--> Revoked --restore--> Active
    Active --time----> Expired --restore--> Active

Live profiles have no expiry; set_active switches them on and off.
Any token can be deleted, which also removes its scope links and,
best-effort, its access history.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.logging import mask_token
from .audit import AccessAuditor
from .errors import TokenNotFoundError, UnauthorizedError, ValidationError
from .issuer import expiry_after
from .persistence import LINKS_TABLE, TOKENS_TABLE, Persistence
from .tokens import DEFAULT_TTL_HOURS, CapabilityToken, ScopeKind, utc_now

logger = logging.getLogger(__name__)


class TokenLifecycle:
    """Applies owner-initiated mutations to capability tokens."""

    def __init__(
        self,
        persistence: Persistence,
        auditor: AccessAuditor,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._persistence = persistence
        self._auditor = auditor
        self._clock = clock

    def load_owned(self, token_id: str, owner_id: str) -> CapabilityToken:
        """Load a token and check that owner_id owns it.

        Raises:
            TokenNotFoundError: No such token
            UnauthorizedError: owner_id is not the token's owner
        """
        row = self._persistence.get(TOKENS_TABLE, token_id) if token_id else None
        if row is None:
            raise TokenNotFoundError(token_id)
        token = CapabilityToken.from_row(row)
        if not owner_id or token.owner_id != owner_id:
            logger.warning("Rejected change to token %s by a non-owner", mask_token(token_id))
            raise UnauthorizedError(token_id, owner_id)
        return token

    def _apply(self, token: CapabilityToken, patch: dict) -> CapabilityToken:
        row = self._persistence.update(TOKENS_TABLE, token.id, patch)
        if row is None:
            # Deleted concurrently between load and update
            raise TokenNotFoundError(token.id)
        return CapabilityToken.from_row(row)

    def revoke(self, token_id: str, owner_id: str) -> CapabilityToken:
        """Revoke a token. Revoking an already revoked token is a no-op."""
        token = self.load_owned(token_id, owner_id)
        if token.is_revoked:
            return token
        token = self._apply(token, {"is_revoked": True})
        logger.info("Revoked token %s", mask_token(token_id))
        return token

    def restore(
        self,
        token_id: str,
        owner_id: str,
        new_ttl_hours: float = DEFAULT_TTL_HOURS,
    ) -> CapabilityToken:
        """Reactivate an expired or revoked token with a fresh expiry.

        Clears the revocation, switches the token back on and sets
        ``expires_at = now + new_ttl_hours``.

        Raises:
            ValidationError: Live profile token, or a non-positive or out of range ttl
        """
        token = self.load_owned(token_id, owner_id)
        if token.scope_kind is ScopeKind.LIVE_PROFILE:
            raise ValidationError("live profile tokens do not expire; use set_active", field="token_id")
        if isinstance(new_ttl_hours, bool) or not isinstance(new_ttl_hours, (int, float)) or new_ttl_hours <= 0:
            raise ValidationError("new_ttl_hours must be a positive number", field="new_ttl_hours")

        expires_at = expiry_after(self._clock(), new_ttl_hours, field="new_ttl_hours")
        token = self._apply(token, {"is_revoked": False, "is_active": True, "expires_at": expires_at})
        logger.info("Restored token %s for %s hour(s)", mask_token(token_id), new_ttl_hours)
        return token

    def set_active(self, token_id: str, owner_id: str, active: bool) -> CapabilityToken:
        """Switch a live profile token on or off.

        Raises:
            ValidationError: Token is not a live profile
        """
        token = self.load_owned(token_id, owner_id)
        if token.scope_kind is not ScopeKind.LIVE_PROFILE:
            raise ValidationError("only live profile tokens can be switched on and off", field="token_id")
        token = self._apply(token, {"is_active": bool(active)})
        logger.info("Live profile token %s turned %s", mask_token(token_id), "on" if active else "off")
        return token

    def delete(self, token_id: str, owner_id: str, purge_history: bool = True) -> None:
        """Hard-delete a token and its scope links.

        Links and token go in one transaction. Purging access events runs
        afterwards and only logs on failure; the token is already gone.
        """
        token = self.load_owned(token_id, owner_id)
        with self._persistence.transaction() as tx:
            links = tx.delete_where(LINKS_TABLE, {"token_id": token.id})
            tx.delete(TOKENS_TABLE, token.id)
        logger.info("Deleted token %s and %d scope link(s)", mask_token(token_id), links)

        if not purge_history:
            return
        try:
            purged = self._auditor.purge_history(token.id)
        except Exception:
            logger.warning("Could not purge access history for token %s", mask_token(token_id), exc_info=True)
            return
        logger.debug("Purged %d access event(s) for token %s", purged, mask_token(token_id))
