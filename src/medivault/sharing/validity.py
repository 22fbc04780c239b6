# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Validity evaluation for capability tokens.

Pure functions: no I/O and no ambient clock. Callers pass ``now`` so the
access gate and any owner-facing display agree on a single instant.

Precedence when several conditions hold: revoked > inactive > expired.
A token is active iff ``now < expires_at``; the expiry instant itself is
already expired.
"""

from __future__ import annotations

from datetime import datetime

from .tokens import CapabilityToken, TokenState, ensure_utc


def evaluate(token: CapabilityToken, now: datetime) -> TokenState:
    """Compute a token's current state.

    Args:
        token: Freshly loaded token
        now: Evaluation instant; naive values are treated as UTC

    Returns:
        The TokenState verdict
    """
    if token.is_revoked:
        return TokenState.REVOKED
    if not token.is_active:
        return TokenState.INACTIVE
    if token.expires_at is not None and ensure_utc(now) >= token.expires_at:
        return TokenState.EXPIRED
    return TokenState.ACTIVE


def is_usable(token: CapabilityToken, now: datetime) -> bool:
    """True iff the token currently grants access."""
    return evaluate(token, now) is TokenState.ACTIVE
