"""Tests for token validity evaluation (sharing/validity.py)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from medivault.sharing.tokens import CapabilityToken, ScopeKind, TokenState
from medivault.sharing.validity import evaluate, is_usable

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _token(**overrides) -> CapabilityToken:
    data = {
        "id": "tok",
        "owner_id": "owner-1",
        "scope_kind": ScopeKind.SINGLE_RECORD,
        "created_at": NOW - timedelta(hours=1),
        "scope_refs": ["r1"],
        "expires_at": NOW + timedelta(hours=1),
    }
    data.update(overrides)
    return CapabilityToken(**data)


class TestExpiryBoundary:
    def test_active_just_before_expiry(self):
        token = _token(expires_at=NOW + timedelta(microseconds=1))
        assert evaluate(token, NOW) is TokenState.ACTIVE

    def test_expired_at_exact_instant(self):
        token = _token(expires_at=NOW)
        assert evaluate(token, NOW) is TokenState.EXPIRED

    def test_expired_after(self):
        token = _token(expires_at=NOW - timedelta(seconds=1))
        assert evaluate(token, NOW) is TokenState.EXPIRED

    def test_naive_now_is_utc(self):
        token = _token(expires_at=NOW)
        assert evaluate(token, NOW.replace(tzinfo=None)) is TokenState.EXPIRED


class TestPrecedence:
    def test_revoked_beats_expired(self):
        token = _token(is_revoked=True, expires_at=NOW - timedelta(days=1))
        assert evaluate(token, NOW) is TokenState.REVOKED

    def test_revoked_beats_inactive(self):
        token = _token(is_revoked=True, is_active=False)
        assert evaluate(token, NOW) is TokenState.REVOKED

    def test_inactive_beats_expired(self):
        token = _token(is_active=False, expires_at=NOW - timedelta(days=1))
        assert evaluate(token, NOW) is TokenState.INACTIVE


class TestLiveProfile:
    @pytest.fixture
    def live(self):
        return _token(scope_kind=ScopeKind.LIVE_PROFILE, scope_refs=[], expires_at=None)

    def test_never_expires(self, live):
        assert evaluate(live, NOW + timedelta(days=3650)) is TokenState.ACTIVE

    def test_switched_off(self, live):
        live.is_active = False
        assert evaluate(live, NOW) is TokenState.INACTIVE
        assert not is_usable(live, NOW)


def test_is_usable_matches_evaluate():
    assert is_usable(_token(), NOW)
    assert not is_usable(_token(expires_at=NOW), NOW)
