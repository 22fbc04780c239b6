# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""The access gate: the only path that reads token-scoped resources.

    look up token (fresh) -> evaluate -> deny with a typed error
                                      -> or resolve the scope
    ... and in every case where the token was found, record one access event.

Unknown token ids raise TokenNotFoundError and are not audited; there is
no token to attribute the event to.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.logging import mask_token
from .audit import OUTCOME_ERROR, AccessAuditor
from .errors import TokenNotFoundError, error_for_state
from .persistence import TOKENS_TABLE, Persistence
from .resolver import ScopeResolver
from .resources import Resource, ResourceKind
from .tokens import CapabilityToken, TokenState, utc_now
from .validity import evaluate

logger = logging.getLogger(__name__)


@dataclass
class AccessGrant:
    """Result of a successful token access."""

    token: CapabilityToken
    state: TokenState
    granted_at: datetime
    resources: list[Resource] = field(default_factory=list)

    def _of_kind(self, kind: ResourceKind) -> list[Resource]:
        return [r for r in self.resources if r.kind is kind]

    @property
    def records(self) -> list[Resource]:
        return self._of_kind(ResourceKind.HEALTH_RECORD)

    @property
    def medications(self) -> list[Resource]:
        return self._of_kind(ResourceKind.MEDICATION)

    @property
    def emergency_profile(self) -> Resource | None:
        profiles = self._of_kind(ResourceKind.EMERGENCY_PROFILE)
        return profiles[0] if profiles else None

    def to_dict(self) -> dict[str, Any]:
        profile = self.emergency_profile
        return {
            "scope_kind": self.token.scope_kind.value,
            "label": self.token.label,
            "owner_id": self.token.owner_id,
            "state": self.state.value,
            "granted_at": self.granted_at.isoformat(),
            "expires_at": self.token.expires_at.isoformat() if self.token.expires_at else None,
            "records": [r.to_dict() for r in self.records],
            "medications": [r.to_dict() for r in self.medications],
            "emergency_profile": profile.to_dict() if profile else None,
        }


class AccessGate:
    """Validates a presented token id and returns the scope it grants."""

    def __init__(
        self,
        persistence: Persistence,
        resolver: ScopeResolver,
        auditor: AccessAuditor,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._persistence = persistence
        self._resolver = resolver
        self._auditor = auditor
        self._clock = clock

    def access_by_token(self, token_id: str, requestor_id: str | None = None) -> AccessGrant:
        """Resolve a token's scope if the token is currently usable.

        Args:
            token_id: Id presented by the holder (from the share link)
            requestor_id: Authenticated identity, or None for anonymous

        Returns:
            AccessGrant with the resolved resources

        Raises:
            TokenNotFoundError: No such token
            TokenExpiredError, TokenRevokedError, TokenInactiveError:
                Token exists but is not usable
        """
        row = self._persistence.get(TOKENS_TABLE, token_id) if token_id else None
        if row is None:
            logger.info("Access denied for unknown token %s", mask_token(token_id))
            raise TokenNotFoundError(token_id)

        token = CapabilityToken.from_row(row)
        now = self._clock()
        state = evaluate(token, now)
        outcome: str = OUTCOME_ERROR
        try:
            if state is not TokenState.ACTIVE:
                outcome = state.value
                logger.info("Access denied for token %s: %s", mask_token(token_id), state.value)
                raise error_for_state(state, token)

            resources = self._resolver.resolve(token)
            outcome = state.value
            logger.info(
                "Access granted for token %s (%s, %d resource(s))",
                mask_token(token_id),
                token.scope_kind.value,
                len(resources),
            )
            return AccessGrant(token=token, state=state, granted_at=now, resources=resources)
        finally:
            self._auditor.record_access(token.id, requestor_id, outcome)
