# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Owned resources that capability tokens grant access to.

Health records, medications and emergency profiles are opaque payloads
here; the sharing core only needs their id, owner and creation time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from .persistence import (
    EMERGENCY_PROFILES_TABLE,
    HEALTH_RECORDS_TABLE,
    MEDICATIONS_TABLE,
    Persistence,
    Row,
)
from .tokens import parse_datetime

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Kinds of owner data a token can expose."""

    HEALTH_RECORD = "health_record"
    MEDICATION = "medication"
    EMERGENCY_PROFILE = "emergency_profile"


RESOURCE_TABLES: dict[ResourceKind, str] = {
    ResourceKind.HEALTH_RECORD: HEALTH_RECORDS_TABLE,
    ResourceKind.MEDICATION: MEDICATIONS_TABLE,
    ResourceKind.EMERGENCY_PROFILE: EMERGENCY_PROFILES_TABLE,
}


@dataclass
class Resource:
    """An owned item returned through a token grant."""

    id: str
    owner_id: str
    kind: ResourceKind
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, kind: ResourceKind, row: Row) -> Resource:
        created_at = parse_datetime(row["created_at"])
        if created_at is None:
            raise ValueError(f"{kind.value} row is missing created_at")
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            kind=kind,
            created_at=created_at,
            payload=dict(row.get("payload") or {}),
        )

    def to_row(self) -> Row:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "payload": dict(self.payload),
            "created_at": self.created_at,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
            "payload": self.payload,
        }


class ResourceDirectory(Protocol):
    """Resource lookup used by the issuer and the scope resolver."""

    def list_owned_resources(self, owner_id: str, kind: ResourceKind) -> list[Resource]: ...

    def get_resources(self, ids: Iterable[str], kind: ResourceKind) -> list[Resource]: ...


class PersistenceResourceDirectory:
    """ResourceDirectory over a Persistence, one table per resource kind."""

    def __init__(self, persistence: Persistence):
        self._persistence = persistence

    def list_owned_resources(self, owner_id: str, kind: ResourceKind) -> list[Resource]:
        """All resources of a kind owned by owner_id, newest first."""
        rows = self._persistence.query(
            RESOURCE_TABLES[kind],
            where={"owner_id": owner_id},
            order_by="created_at",
            descending=True,
        )
        return [Resource.from_row(kind, row) for row in rows]

    def get_resources(self, ids: Iterable[str], kind: ResourceKind) -> list[Resource]:
        """Resources with the given ids; ids that no longer exist are absent."""
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []
        rows = self._persistence.query(RESOURCE_TABLES[kind], where={"id": wanted})
        return [Resource.from_row(kind, row) for row in rows]

    def add_resource(self, resource: Resource) -> Resource:
        """Store a resource. Used by seeding and tests; uploads live elsewhere."""
        self._persistence.insert(RESOURCE_TABLES[resource.kind], resource.to_row())
        return resource

    def remove_resource(self, resource_id: str, kind: ResourceKind) -> bool:
        """Delete a resource, as an owner deleting a record would."""
        return self._persistence.delete(RESOURCE_TABLES[kind], resource_id)
