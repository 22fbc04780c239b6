# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Access auditing for capability tokens.

Every time the access gate locates a token it records one access event.
Writes are best-effort: a failure is logged and swallowed so that a
logging problem never blocks an access that was otherwise granted.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from ..core.logging import mask_token
from .errors import AuditWriteFailure
from .persistence import EVENTS_TABLE, Persistence
from .tokens import AccessEvent, TokenState, utc_now

logger = logging.getLogger(__name__)

OUTCOME_ERROR = "error"


class AccessAuditor:
    """Append-only access log over a Persistence."""

    def __init__(self, persistence: Persistence, clock: Callable[[], datetime] = utc_now):
        self._persistence = persistence
        self._clock = clock

    def _write(self, event: AccessEvent) -> None:
        try:
            self._persistence.insert(EVENTS_TABLE, event.to_row())
        except Exception as e:
            raise AuditWriteFailure(f"Failed to write access event: {e}") from e

    def record_access(
        self,
        token_id: str,
        accessed_by: str | None = None,
        outcome: TokenState | str = TokenState.ACTIVE,
    ) -> AccessEvent | None:
        """Append an access event; never raises.

        Args:
            token_id: Token that was presented
            accessed_by: Requestor identity, or None for anonymous scans
            outcome: State observed by the gate, or "error"

        Returns:
            The written event, or None if the write failed
        """
        event = AccessEvent(
            id=str(uuid.uuid4()),
            token_id=token_id,
            accessed_by=accessed_by,
            accessed_at=self._clock(),
            outcome=outcome.value if isinstance(outcome, TokenState) else str(outcome),
        )
        try:
            self._write(event)
        except AuditWriteFailure:
            logger.warning("Access event for token %s was not recorded", mask_token(token_id), exc_info=True)
            return None
        return event

    def list_access_history(self, token_id: str, limit: int | None = None) -> list[AccessEvent]:
        """Access events for a token, most recent first."""
        rows = self._persistence.query(
            EVENTS_TABLE,
            where={"token_id": token_id},
            order_by=("accessed_at", "seq"),
            descending=True,
        )
        events = [AccessEvent.from_row(row) for row in rows]
        return events[:limit] if limit is not None else events

    def purge_history(self, token_id: str) -> int:
        """Delete every event for a token. Only used when the token is deleted."""
        return self._persistence.delete_where(EVENTS_TABLE, {"token_id": token_id})
