"""Tests for Sharing API endpoints (server/sharing_endpoints.py).

Tests cover:
1. access_endpoint - GET /api/v1/access/{token_id}
2. issue_token_endpoint - POST /api/v1/tokens
3. list_tokens_endpoint / get_token_endpoint - GET /api/v1/tokens[/{id}]
4. revoke / restore / active / delete - owner mutations
5. access_history_endpoint - GET /api/v1/tokens/{id}/access
6. live profile endpoints - GET/POST /api/v1/live-profile
7. Error handling (auth, invalid JSON, service unavailable, internal errors)
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from starlette.testclient import TestClient

from medivault.server.app import create_app
from medivault.sharing import ResourceKind, ScopeKind

# ============================================================================
# Helpers
# ============================================================================


def _issue(client, headers, **body):
    response = client.post("/api/v1/tokens", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["token"]


# ============================================================================
# Access (token holders)
# ============================================================================


class TestAccessEndpoint:
    """Tests for GET /api/v1/access/{token_id}."""

    def test_anonymous_access(self, client, api_service, add_resource):
        record = add_resource("alice", title="Lipid panel")
        summary = api_service.share_record("alice", record.id)

        response = client.get(f"/api/v1/access/{summary.token.id}")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["state"] == "active"
        assert [r["id"] for r in data["records"]] == [record.id]
        assert data["records"][0]["payload"] == {"title": "Lipid panel"}

        history = api_service.list_access_history(summary.token.id, "alice")
        assert history[0].accessed_by is None

    def test_authenticated_viewer_is_recorded(self, client, api_service, auth_headers):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        client.get(f"/api/v1/access/{token.id}", headers=auth_headers("dr-lee"))
        history = api_service.list_access_history(token.id, "alice")
        assert history[0].accessed_by == "dr-lee"

    def test_invalid_bearer_is_anonymous(self, client, api_service):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        response = client.get(f"/api/v1/access/{token.id}", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 200
        assert api_service.list_access_history(token.id, "alice")[0].accessed_by is None

    def test_unknown_token(self, client):
        response = client.get("/api/v1/access/not-a-real-token")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND_TOKEN"

    def test_expired_token(self, client, api_service, clock):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"], ttl=1)
        clock.advance(hours=1)
        response = client.get(f"/api/v1/access/{token.id}")
        assert response.status_code == 410
        error = response.json()["error"]
        assert error["code"] == "TOKEN_EXPIRED"
        assert "expired" in error["message"]

    def test_revoked_token(self, client, api_service):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"])
        api_service.revoke(token.id, "alice")
        response = client.get(f"/api/v1/access/{token.id}")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TOKEN_REVOKED"

    def test_inactive_live_profile(self, client, api_service):
        token = api_service.issue("alice", ScopeKind.LIVE_PROFILE)
        api_service.set_active(token.id, "alice", False)
        response = client.get(f"/api/v1/access/{token.id}")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TOKEN_INACTIVE"

    def test_live_profile_payload(self, client, api_service, add_resource):
        token = api_service.issue("alice", ScopeKind.LIVE_PROFILE)
        add_resource("alice", ResourceKind.MEDICATION, name="Lisinopril")
        add_resource("alice", ResourceKind.EMERGENCY_PROFILE, allergies=["penicillin"])

        data = client.get(f"/api/v1/access/{token.id}").json()
        assert data["medications"][0]["payload"]["name"] == "Lisinopril"
        assert data["emergency_profile"]["payload"]["allergies"] == ["penicillin"]

    def test_correlation_id_echoed(self, client):
        response = client.get("/api/v1/access/whatever", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


# ============================================================================
# Issuance
# ============================================================================


class TestIssueTokenEndpoint:
    """Tests for POST /api/v1/tokens."""

    def test_requires_auth(self, client):
        response = client.post("/api/v1/tokens", json={"scope_kind": "record_set"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_MISSING_TOKEN"

    def test_rejects_bad_token(self, client):
        response = client.post(
            "/api/v1/tokens",
            json={"scope_kind": "record_set"},
            headers={"Authorization": "Bearer not.a.jwt"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_INVALID_TOKEN"

    def test_single_record(self, client, auth_headers, add_resource):
        record = add_resource("alice")
        token = _issue(
            client,
            auth_headers("alice"),
            scope_kind="single_record",
            scope_refs=[record.id],
            ttl_hours=2,
            label="For Dr. Rivera",
        )
        assert token["scope_kind"] == "single_record"
        assert token["label"] == "For Dr. Rivera"
        assert token["record_count"] == 1
        assert token["share_url"] == f"https://medivault.app/shared-record/{token['id']}"
        assert token["qr_image_url"].startswith("https://api.qrserver.com/v1/create-qr-code/?size=200x200&data=")

    def test_single_record_of_someone_else(self, client, auth_headers, add_resource):
        record = add_resource("bob")
        response = client.post(
            "/api/v1/tokens",
            json={"scope_kind": "single_record", "scope_refs": [record.id]},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_INVALID_VALUE"

    def test_record_set_snapshot(self, client, auth_headers, add_resource):
        add_resource("alice")
        add_resource("alice")
        token = _issue(client, auth_headers("alice"), scope_kind="record_set")
        assert token["record_count"] == 2
        assert token["label"] == "My Medical Records"
        assert token["state"] == "active"

    def test_live_profile(self, client, auth_headers):
        token = _issue(client, auth_headers("alice"), scope_kind="live_profile", include_emergency_profile=False)
        assert token["expires_at"] is None
        assert token["include_emergency_profile"] is False
        assert "size=300x300" in token["qr_image_url"]

    def test_live_profile_with_ttl(self, client, auth_headers):
        response = client.post(
            "/api/v1/tokens",
            json={"scope_kind": "live_profile", "ttl_hours": 24},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400

    @pytest.mark.parametrize(
        ("body", "code"),
        [
            ({}, "VALIDATION_MISSING_FIELD"),
            ({"scope_kind": "everything"}, "VALIDATION_INVALID_VALUE"),
            ({"scope_kind": "record_set", "scope_refs": "r1"}, "VALIDATION_INVALID_VALUE"),
            ({"scope_kind": "record_set", "ttl_hours": -1}, "VALIDATION_INVALID_VALUE"),
            ({"scope_kind": "record_set", "ttl_hours": True}, "VALIDATION_INVALID_VALUE"),
            ({"scope_kind": "record_set", "ttl_hours": 1e9}, "VALIDATION_INVALID_VALUE"),
            ({"scope_kind": "single_record", "scope_refs": []}, "VALIDATION_INVALID_VALUE"),
        ],
    )
    def test_validation(self, client, auth_headers, body, code):
        response = client.post("/api/v1/tokens", json=body, headers=auth_headers("alice"))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == code

    def test_invalid_json(self, client, auth_headers):
        response = client.post(
            "/api/v1/tokens",
            content=b"{not json",
            headers={**auth_headers("alice"), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_INVALID_JSON"


# ============================================================================
# Owner views
# ============================================================================


class TestListAndGet:
    """Tests for GET /api/v1/tokens and GET /api/v1/tokens/{id}."""

    def test_list_only_own_tokens(self, client, auth_headers, api_service, clock):
        first = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        clock.advance(minutes=1)
        second = api_service.issue("alice", ScopeKind.LIVE_PROFILE)
        api_service.issue("bob", ScopeKind.RECORD_SET, ["r2"])

        data = client.get("/api/v1/tokens", headers=auth_headers("alice")).json()
        assert data["count"] == 2
        assert [t["id"] for t in data["tokens"]] == [second.id, first.id]

    def test_list_filter(self, client, auth_headers, api_service):
        api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        api_service.issue("alice", ScopeKind.LIVE_PROFILE)
        data = client.get("/api/v1/tokens?scope_kind=live_profile", headers=auth_headers("alice")).json()
        assert [t["scope_kind"] for t in data["tokens"]] == ["live_profile"]

    def test_list_bad_filter(self, client, auth_headers):
        response = client.get("/api/v1/tokens?scope_kind=bogus", headers=auth_headers("alice"))
        assert response.status_code == 400

    def test_list_shows_expired(self, client, auth_headers, api_service, clock):
        api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"], ttl=1)
        clock.advance(hours=2)
        token = client.get("/api/v1/tokens", headers=auth_headers("alice")).json()["tokens"][0]
        assert token["state"] == "expired"
        assert token["is_expired"] is True

    def test_get_owned(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1", "r2"])
        response = client.get(f"/api/v1/tokens/{token.id}", headers=auth_headers("alice"))
        assert response.status_code == 200
        assert response.json()["token"]["record_count"] == 2

    def test_get_not_owner(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        response = client.get(f"/api/v1/tokens/{token.id}", headers=auth_headers("mallory"))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN_NOT_OWNER"

    def test_get_missing(self, client, auth_headers):
        response = client.get("/api/v1/tokens/missing", headers=auth_headers("alice"))
        assert response.status_code == 404


# ============================================================================
# Owner mutations
# ============================================================================


class TestMutations:
    """Tests for revoke, restore, active and delete."""

    def test_revoke_twice(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"])
        for _ in range(2):
            response = client.post(f"/api/v1/tokens/{token.id}/revoke", headers=auth_headers("alice"))
            assert response.status_code == 200
            assert response.json()["token"]["is_revoked"] is True

    def test_revoke_not_owner(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"])
        response = client.post(f"/api/v1/tokens/{token.id}/revoke", headers=auth_headers("mallory"))
        assert response.status_code == 403
        assert api_service.get_owned_token(token.id, "alice").token.is_revoked is False

    def test_restore_with_ttl(self, client, auth_headers, api_service, clock):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"], ttl=1)
        api_service.revoke(token.id, "alice")
        clock.advance(hours=3)

        response = client.post(
            f"/api/v1/tokens/{token.id}/restore",
            json={"ttl_hours": 48},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 200
        restored = response.json()["token"]
        assert restored["is_revoked"] is False
        assert client.get(f"/api/v1/access/{token.id}").status_code == 200

    def test_restore_without_body(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"])
        response = client.post(f"/api/v1/tokens/{token.id}/restore", headers=auth_headers("alice"))
        assert response.status_code == 200

    def test_restore_bad_ttl(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"])
        response = client.post(
            f"/api/v1/tokens/{token.id}/restore",
            json={"ttl_hours": 0},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400

    def test_restore_huge_ttl(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.SINGLE_RECORD, ["r1"])
        response = client.post(
            f"/api/v1/tokens/{token.id}/restore",
            json={"ttl_hours": 1e12},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_INVALID_VALUE"

    def test_restore_live_profile_rejected(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.LIVE_PROFILE)
        response = client.post(f"/api/v1/tokens/{token.id}/restore", headers=auth_headers("alice"))
        assert response.status_code == 400

    def test_set_active(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.LIVE_PROFILE)
        response = client.post(
            f"/api/v1/tokens/{token.id}/active",
            json={"active": False},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 200
        assert response.json()["token"]["is_active"] is False
        assert client.get(f"/api/v1/access/{token.id}").status_code == 403

    @pytest.mark.parametrize(
        ("body", "code"),
        [({}, "VALIDATION_MISSING_FIELD"), ({"active": "no"}, "VALIDATION_INVALID_VALUE")],
    )
    def test_set_active_validation(self, client, auth_headers, api_service, body, code):
        token = api_service.issue("alice", ScopeKind.LIVE_PROFILE)
        response = client.post(f"/api/v1/tokens/{token.id}/active", json=body, headers=auth_headers("alice"))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == code

    def test_delete(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        response = client.delete(f"/api/v1/tokens/{token.id}", headers=auth_headers("alice"))
        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted": True}
        assert client.get(f"/api/v1/access/{token.id}").status_code == 404

    def test_delete_keeps_history_when_asked(self, client, auth_headers, api_service, persistence):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        api_service.access_by_token(token.id)
        client.delete(f"/api/v1/tokens/{token.id}?purge_history=false", headers=auth_headers("alice"))
        assert len(persistence.query("access_events", where={"token_id": token.id})) == 1


class TestAccessHistoryEndpoint:
    """Tests for GET /api/v1/tokens/{id}/access."""

    def test_history(self, client, auth_headers, api_service, clock):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        api_service.access_by_token(token.id)
        clock.advance(minutes=1)
        api_service.access_by_token(token.id, "dr-lee")

        data = client.get(f"/api/v1/tokens/{token.id}/access", headers=auth_headers("alice")).json()
        assert data["count"] == 2
        assert [e["accessed_by"] for e in data["events"]] == ["dr-lee", None]

    def test_limit(self, client, auth_headers, api_service, clock):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        for _ in range(3):
            api_service.access_by_token(token.id)
            clock.advance(seconds=1)
        data = client.get(f"/api/v1/tokens/{token.id}/access?limit=2", headers=auth_headers("alice")).json()
        assert data["count"] == 2

    def test_not_owner(self, client, auth_headers, api_service):
        token = api_service.issue("alice", ScopeKind.RECORD_SET, ["r1"])
        response = client.get(f"/api/v1/tokens/{token.id}/access", headers=auth_headers("bob"))
        assert response.status_code == 403


# ============================================================================
# Live profile
# ============================================================================


class TestLiveProfileEndpoints:
    """Tests for /api/v1/live-profile."""

    def test_missing(self, client, auth_headers):
        response = client.get("/api/v1/live-profile", headers=auth_headers("alice"))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND_LIVE_PROFILE"

    def test_create_then_get(self, client, auth_headers):
        created = client.post("/api/v1/live-profile", headers=auth_headers("alice"))
        assert created.status_code == 201
        assert created.json()["created"] is True
        token_id = created.json()["token"]["id"]

        again = client.post("/api/v1/live-profile", json={}, headers=auth_headers("alice"))
        assert again.status_code == 200
        assert again.json()["token"]["id"] == token_id

        fetched = client.get("/api/v1/live-profile", headers=auth_headers("alice"))
        assert fetched.json()["token"]["share_url"].endswith(f"/live-profile/{token_id}")


# ============================================================================
# Error handling
# ============================================================================


class TestErrorHandling:
    def test_service_unavailable(self, app, auth_headers):
        app.state.sharing_service = None
        client = TestClient(app)
        assert client.get("/api/v1/access/abc").status_code == 503
        assert client.get("/api/v1/tokens", headers=auth_headers("alice")).status_code == 503

    def test_unexpected_error_is_500(self, server_settings, auth_headers):
        service = MagicMock()
        service.list_owner_tokens.side_effect = RuntimeError("database exploded")
        client = TestClient(create_app(service=service, settings=server_settings))

        response = client.get("/api/v1/tokens", headers=auth_headers("alice"))
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "request_id" in error
        assert "exploded" not in response.text
