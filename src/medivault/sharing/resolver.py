# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Scope resolution: turning a token's scope into concrete resources.

Static scopes (single record, record bundle) read exactly the resources
bound at issuance; ones deleted since then drop out silently. Live
profiles fetch the owner's current records, medications and, when opted
in, emergency profile on every resolution.

Every resolved resource is re-checked against the token owner, so a
tampered or stale binding can never expose another owner's data.
"""

from __future__ import annotations

import logging

from ..core.logging import mask_token
from .persistence import LINKS_TABLE, Persistence
from .resources import Resource, ResourceDirectory, ResourceKind
from .tokens import CapabilityToken, ScopeKind

logger = logging.getLogger(__name__)


def _newest_first(resources: list[Resource]) -> list[Resource]:
    return sorted(resources, key=lambda r: r.created_at, reverse=True)


class ScopeResolver:
    """Expands a token's scope into the resources it currently covers."""

    def __init__(self, persistence: Persistence, resources: ResourceDirectory):
        self._persistence = persistence
        self._resources = resources

    def resolve(self, token: CapabilityToken) -> list[Resource]:
        """Materialize the resource set for a token.

        Validity is not checked here; callers go through the access gate.
        """
        if token.scope_kind is ScopeKind.LIVE_PROFILE:
            resolved = self._resolve_live(token)
        else:
            resolved = self._resolve_bound(token)
        return self._owned_only(token, resolved)

    def bound_refs(self, token: CapabilityToken) -> list[str]:
        """Resource ids linked to a static token, in link order."""
        links = self._persistence.query(LINKS_TABLE, where={"token_id": token.id}, order_by="created_at")
        if not links:
            return list(token.scope_refs)
        return list(dict.fromkeys(link["resource_id"] for link in links))

    def count_bound(self, token: CapabilityToken) -> int:
        """Number of resources bound at issuance, without reading them."""
        if token.scope_kind is ScopeKind.LIVE_PROFILE:
            return 0
        return len(self.bound_refs(token))

    def _resolve_bound(self, token: CapabilityToken) -> list[Resource]:
        refs = self.bound_refs(token)
        found = self._resources.get_resources(refs, ResourceKind.HEALTH_RECORD)
        if len(found) < len(refs):
            logger.debug(
                "Token %s: %d of %d bound record(s) no longer exist",
                mask_token(token.id),
                len(refs) - len(found),
                len(refs),
            )
        return _newest_first(found)

    def _resolve_live(self, token: CapabilityToken) -> list[Resource]:
        resolved = self._resources.list_owned_resources(token.owner_id, ResourceKind.HEALTH_RECORD)
        resolved += self._resources.list_owned_resources(token.owner_id, ResourceKind.MEDICATION)
        if token.include_emergency_profile:
            profiles = self._resources.list_owned_resources(token.owner_id, ResourceKind.EMERGENCY_PROFILE)
            resolved += profiles[:1]
        return resolved

    @staticmethod
    def _owned_only(token: CapabilityToken, resources: list[Resource]) -> list[Resource]:
        owned = [r for r in resources if r.owner_id == token.owner_id]
        dropped = len(resources) - len(owned)
        if dropped:
            logger.warning(
                "Token %s: dropped %d resource(s) not owned by the token owner",
                mask_token(token.id),
                dropped,
            )
        return owned
