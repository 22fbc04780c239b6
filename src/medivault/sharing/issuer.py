# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Token issuance.

Every call mints a fresh token id; issuance is never idempotent. Record
bundles issued without an explicit list snapshot the owner's health
records at issuance time, so records added later are not included.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from ..core.logging import mask_token
from .errors import ValidationError
from .persistence import LINKS_TABLE, TOKENS_TABLE, Persistence
from .resources import ResourceDirectory, ResourceKind
from .tokens import (
    DEFAULT_LABELS,
    DEFAULT_TTL_HOURS,
    CapabilityToken,
    ScopeKind,
    generate_token_id,
    utc_now,
)

logger = logging.getLogger(__name__)

TTL = timedelta | int | float


def _coerce_ttl(ttl: TTL, field: str = "ttl") -> timedelta:
    if isinstance(ttl, bool):
        raise ValidationError("ttl must be a duration or a number of hours", field=field)
    if isinstance(ttl, timedelta):
        value = ttl
    elif isinstance(ttl, (int, float)):
        try:
            value = timedelta(hours=ttl)
        except (OverflowError, ValueError):
            raise ValidationError("ttl is out of range", field=field) from None
    else:
        raise ValidationError("ttl must be a duration or a number of hours", field=field)
    if value <= timedelta(0):
        raise ValidationError("ttl must be positive", field=field)
    return value


def expiry_after(now: datetime, ttl: TTL, field: str = "ttl") -> datetime:
    """Return ``now + ttl``.

    Raises:
        ValidationError: ttl is not positive or lands past the last representable date
    """
    try:
        return now + _coerce_ttl(ttl, field)
    except OverflowError:
        raise ValidationError("ttl is out of range", field=field) from None


class TokenIssuer:
    """Mints capability tokens and their scope-linking rows.

    Args:
        persistence: Token and link storage
        resources: Resource lookup used for record bundle snapshots
        default_ttl: Lifetime of expiring tokens when none is given
        clock: Source of the issuance instant
    """

    def __init__(
        self,
        persistence: Persistence,
        resources: ResourceDirectory,
        default_ttl: TTL = DEFAULT_TTL_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._persistence = persistence
        self._resources = resources
        self._default_ttl = _coerce_ttl(default_ttl)
        self._clock = clock

    def issue(
        self,
        owner_id: str,
        scope_kind: ScopeKind | str,
        scope_refs: Sequence[str] | None = None,
        ttl: TTL | None = None,
        label: str | None = None,
        include_emergency_profile: bool = True,
    ) -> CapabilityToken:
        """Mint a new token bound to a scope.

        Args:
            owner_id: Pre-authenticated identity of the owner
            scope_kind: Kind of scope to grant
            scope_refs: Resource ids to bind. Exactly one for single_record;
                optional for record_set, where None snapshots every health
                record the owner holds. Ignored for live_profile.
            ttl: Lifetime for expiring kinds, as a timedelta or hours.
                Must be None for live_profile.
            label: Optional description; kind default when None
            include_emergency_profile: Live profiles only

        Returns:
            The persisted token

        Raises:
            ValidationError: On missing owner, bad ttl or bad scope refs
        """
        if not owner_id or not str(owner_id).strip():
            raise ValidationError("owner_id is required", field="owner_id")
        try:
            kind = ScopeKind(scope_kind)
        except ValueError:
            raise ValidationError(f"Unknown scope kind: {scope_kind}", field="scope_kind") from None

        now = self._clock()
        refs = self._bind_refs(owner_id, kind, scope_refs)

        if kind is ScopeKind.LIVE_PROFILE:
            if ttl is not None:
                raise ValidationError("live profile tokens do not expire; ttl must be omitted", field="ttl")
            expires_at = None
        else:
            expires_at = expiry_after(now, self._default_ttl if ttl is None else ttl)

        token = CapabilityToken(
            id=generate_token_id(),
            owner_id=owner_id,
            scope_kind=kind,
            scope_refs=refs,
            created_at=now,
            expires_at=expires_at,
            label=label if label is not None else DEFAULT_LABELS[kind],
            include_emergency_profile=include_emergency_profile,
        )

        with self._persistence.transaction() as tx:
            tx.insert(TOKENS_TABLE, token.to_row())
            for resource_id in refs:
                tx.insert(
                    LINKS_TABLE,
                    {
                        "id": str(uuid.uuid4()),
                        "token_id": token.id,
                        "resource_id": resource_id,
                        "owner_id": owner_id,
                        "created_at": now,
                    },
                )

        logger.info(
            "Issued %s token %s with %d bound resource(s)",
            kind.value,
            mask_token(token.id),
            len(refs),
        )
        return token

    def _bind_refs(
        self,
        owner_id: str,
        kind: ScopeKind,
        scope_refs: Sequence[str] | None,
    ) -> list[str]:
        if kind is ScopeKind.LIVE_PROFILE:
            return []

        if isinstance(scope_refs, str):
            raise ValidationError("scope_refs must be a list of resource ids", field="scope_refs")
        refs = list(dict.fromkeys(r for r in (scope_refs or []) if r))

        if kind is ScopeKind.SINGLE_RECORD:
            if len(refs) != 1:
                raise ValidationError("single_record tokens bind exactly one record", field="scope_refs")
            return refs

        if scope_refs is None:
            snapshot = self._resources.list_owned_resources(owner_id, ResourceKind.HEALTH_RECORD)
            refs = [r.id for r in snapshot]
            if not refs:
                logger.warning("Issuing record bundle for owner with no health records; bundle is empty")
        return refs
