# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Sharing API endpoints.

Implements:
- GET    /api/v1/access/{token_id}          - Open a shared link (anonymous allowed)
- POST   /api/v1/tokens                     - Issue a share token
- GET    /api/v1/tokens                     - List the caller's tokens
- GET    /api/v1/tokens/{id}                - Token details (owner only)
- POST   /api/v1/tokens/{id}/revoke         - Revoke a token
- POST   /api/v1/tokens/{id}/restore        - Restore an expired or revoked token
- POST   /api/v1/tokens/{id}/active         - Switch a live profile on or off
- DELETE /api/v1/tokens/{id}                - Delete a token
- GET    /api/v1/tokens/{id}/access         - Access history of a token
- GET    /api/v1/live-profile               - The caller's live profile token
- POST   /api/v1/live-profile               - Get or create the live profile token

The sharing core is synchronous; every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse

from medivault.core.exceptions import MediVaultException
from medivault.sharing import ScopeKind, SharingError, SharingService

from .auth import authenticate, optional_identity
from .errors import (
    NOT_FOUND_LIVE_PROFILE,
    internal_error,
    invalid_json_error,
    medivault_error_response,
    missing_field_error,
    not_found_error,
    service_unavailable_error,
    sharing_error_response,
    validation_error,
)

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 1000


def get_sharing_service(request: Request) -> SharingService | None:
    """Get the sharing service attached to the application."""
    return getattr(request.app.state, "sharing_service", None)


async def _call(request: Request, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking service call, turning failures into error responses.

    Returns the call's result, or a JSONResponse if it raised.
    """
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except SharingError as e:
        return sharing_error_response(e)
    except MediVaultException as e:
        return medivault_error_response(e, debug=request.app.state.settings.debug)
    except Exception as e:
        logger.exception("Unhandled error in sharing endpoint")
        return internal_error(exc=e, debug=request.app.state.settings.debug)


async def _json_body(request: Request, required: bool = True) -> dict[str, Any] | JSONResponse:
    raw = await request.body()
    if not raw.strip():
        return invalid_json_error() if required else {}
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        return invalid_json_error()
    if not isinstance(body, dict):
        return invalid_json_error()
    return body


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return value


# =============================================================================
# TOKEN HOLDER
# =============================================================================


async def access_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/access/{token_id} - Open a shared link.

    Headers:
        Authorization: Optional bearer token; identifies the viewer in the
            access history. Anonymous scans are allowed.

    Returns:
        200: Shared records, medications and emergency profile
        404: NOT_FOUND_TOKEN
        410: TOKEN_EXPIRED
        403: TOKEN_REVOKED or TOKEN_INACTIVE
    """
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    token_id = request.path_params["token_id"]
    requestor_id = optional_identity(request)

    grant = await _call(request, service.access_by_token, token_id, requestor_id)
    if isinstance(grant, JSONResponse):
        return grant
    return JSONResponse({"success": True, **grant.to_dict()})


# =============================================================================
# OWNER
# =============================================================================


async def issue_token_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/tokens - Issue a share token.

    Request Body (JSON):
        {
            "scope_kind": "single_record" | "record_set" | "live_profile",
            "scope_refs": ["record-id", ...],   // optional for record_set
            "ttl_hours": 24,                    // expiring kinds only
            "label": "For Dr. Rivera",          // optional
            "include_emergency_profile": true   // live_profile only
        }

    Returns:
        201: Token summary with share_url and qr_image_url
        400: Invalid request
        401: Not authenticated
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    scope_kind = body.get("scope_kind")
    if not scope_kind:
        return missing_field_error("scope_kind")
    try:
        kind = ScopeKind(scope_kind)
    except ValueError:
        return validation_error(f"Unknown scope_kind: {scope_kind}")

    scope_refs = body.get("scope_refs")
    if scope_refs is not None and (
        not isinstance(scope_refs, list) or not all(isinstance(r, str) for r in scope_refs)
    ):
        return validation_error("scope_refs must be a list of record ids")

    ttl_hours = body.get("ttl_hours")
    if ttl_hours is not None and _positive_number(ttl_hours) is None:
        return validation_error("ttl_hours must be a positive number")

    label = body.get("label")
    include_emergency_profile = bool(body.get("include_emergency_profile", True))

    if kind is ScopeKind.SINGLE_RECORD:
        if not scope_refs or len(scope_refs) != 1:
            return validation_error("single_record tokens bind exactly one record")
        summary = await _call(request, service.share_record, user.user_id, scope_refs[0], ttl_hours, label)
    else:
        token = await _call(
            request,
            service.issue,
            user.user_id,
            kind,
            scope_refs,
            ttl=ttl_hours,
            label=label,
            include_emergency_profile=include_emergency_profile,
        )
        if isinstance(token, JSONResponse):
            return token
        summary = await _call(request, service.describe, token)

    if isinstance(summary, JSONResponse):
        return summary
    return JSONResponse({"success": True, "token": summary.to_dict()}, status_code=201)


async def list_tokens_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/tokens - List the caller's share tokens, newest first.

    Query Parameters:
        scope_kind: Filter by scope kind (optional)
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    scope_kind = request.query_params.get("scope_kind")
    if scope_kind is not None:
        try:
            scope_kind = ScopeKind(scope_kind)
        except ValueError:
            return validation_error(f"Unknown scope_kind: {scope_kind}")

    summaries = await _call(request, service.list_owner_tokens, user.user_id, scope_kind)
    if isinstance(summaries, JSONResponse):
        return summaries
    return JSONResponse(
        {
            "success": True,
            "tokens": [s.to_dict() for s in summaries],
            "count": len(summaries),
        }
    )


async def get_token_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/tokens/{id} - Token metadata for its owner."""
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    summary = await _call(request, service.get_owned_token, request.path_params["id"], user.user_id)
    if isinstance(summary, JSONResponse):
        return summary
    return JSONResponse({"success": True, "token": summary.to_dict()})


async def revoke_token_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/tokens/{id}/revoke - Revoke a token. Idempotent.

    Returns:
        200: Updated token
        403: FORBIDDEN_NOT_OWNER
        404: NOT_FOUND_TOKEN
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    token = await _call(request, service.revoke, request.path_params["id"], user.user_id)
    if isinstance(token, JSONResponse):
        return token
    return JSONResponse({"success": True, "token": token.to_dict()})


async def restore_token_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/tokens/{id}/restore - Reactivate with a fresh expiry.

    Request Body (JSON, optional):
        {"ttl_hours": 24}
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    body = await _json_body(request, required=False)
    if isinstance(body, JSONResponse):
        return body
    ttl_hours = body.get("ttl_hours")
    if ttl_hours is not None and _positive_number(ttl_hours) is None:
        return validation_error("ttl_hours must be a positive number")

    token = await _call(request, service.restore, request.path_params["id"], user.user_id, ttl_hours)
    if isinstance(token, JSONResponse):
        return token
    return JSONResponse({"success": True, "token": token.to_dict()})


async def set_active_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/tokens/{id}/active - Switch a live profile on or off.

    Request Body (JSON):
        {"active": true}
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body
    active = body.get("active")
    if active is None:
        return missing_field_error("active")
    if not isinstance(active, bool):
        return validation_error("active must be true or false")

    token = await _call(request, service.set_active, request.path_params["id"], user.user_id, active)
    if isinstance(token, JSONResponse):
        return token
    return JSONResponse({"success": True, "token": token.to_dict()})


async def delete_token_endpoint(request: Request) -> JSONResponse:
    """DELETE /api/v1/tokens/{id} - Delete a token and its links.

    Query Parameters:
        purge_history: Also delete access events (optional, default true)
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    purge_param = request.query_params.get("purge_history", "true").lower()
    purge_history = purge_param in ("true", "1", "yes")

    result = await _call(
        request,
        service.delete,
        request.path_params["id"],
        user.user_id,
        purge_history=purge_history,
    )
    if isinstance(result, JSONResponse):
        return result
    return JSONResponse({"success": True, "deleted": True})


async def access_history_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/tokens/{id}/access - Who opened a token, most recent first.

    Query Parameters:
        limit: Maximum events (optional, capped at 1000)
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    try:
        limit = int(request.query_params.get("limit", str(MAX_HISTORY_LIMIT)))
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    except ValueError:
        limit = MAX_HISTORY_LIMIT

    events = await _call(
        request,
        service.list_access_history,
        request.path_params["id"],
        user.user_id,
        limit=limit,
    )
    if isinstance(events, JSONResponse):
        return events
    return JSONResponse(
        {
            "success": True,
            "events": [e.to_dict() for e in events],
            "count": len(events),
        }
    )


# =============================================================================
# LIVE PROFILE
# =============================================================================


async def get_live_profile_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/live-profile - The caller's live profile token.

    Returns:
        200: Token summary
        404: NOT_FOUND_LIVE_PROFILE when none was created yet
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    summary = await _call(request, service.get_live_profile, user.user_id)
    if isinstance(summary, JSONResponse):
        return summary
    if summary is None:
        return not_found_error("Live profile", code=NOT_FOUND_LIVE_PROFILE)
    return JSONResponse({"success": True, "token": summary.to_dict()})


async def create_live_profile_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/live-profile - Get the live profile token, creating it if needed.

    Request Body (JSON, optional):
        {"include_emergency_profile": true}

    Returns:
        201: Newly created token
        200: Existing token
    """
    user = authenticate(request)
    if isinstance(user, JSONResponse):
        return user
    service = get_sharing_service(request)
    if service is None:
        return service_unavailable_error("Sharing service")

    body = await _json_body(request, required=False)
    if isinstance(body, JSONResponse):
        return body
    include_emergency_profile = bool(body.get("include_emergency_profile", True))

    result = await _call(
        request,
        service.get_or_create_live_profile,
        user.user_id,
        include_emergency_profile=include_emergency_profile,
    )
    if isinstance(result, JSONResponse):
        return result
    summary, created = result
    return JSONResponse(
        {"success": True, "created": created, "token": summary.to_dict()},
        status_code=201 if created else 200,
    )
