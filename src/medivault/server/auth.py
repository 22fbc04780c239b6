# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Identity extraction for REST endpoints.

MediVault does not log users in. Access tokens are minted by the upstream
auth provider as HS256 JWTs whose ``sub`` claim is the user id; this module
only verifies them and hands the user id to the sharing core.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any

import jwt
from starlette.requests import Request
from starlette.responses import JSONResponse

from .config import ServerSettings
from .errors import AUTH_INVALID_TOKEN, AUTH_MISSING_TOKEN, auth_error

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    """Identity taken from a verified access token."""

    user_id: str
    claims: dict[str, Any] = field(default_factory=dict)


def create_access_token(user_id: str, settings: ServerSettings, expires_in: int = 3600) -> str:
    """Mint an access token the way the auth provider does. For tests and local use."""
    now = time.time()
    payload: dict[str, Any] = {
        "sub": user_id,
        "iat": int(now),
        "exp": int(now + expires_in),
        "jti": secrets.token_urlsafe(16),
    }
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str, settings: ServerSettings) -> dict[str, Any] | None:
    """Verify a JWT access token.

    Returns the payload if valid, None otherwise.
    """
    options = {"require": ["sub", "exp"], "verify_aud": settings.jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Token expired")
        return None
    except jwt.InvalidAudienceError:
        logger.debug("Invalid audience")
        return None
    except jwt.PyJWTError as e:
        logger.debug("JWT verification failed: %s", e)
        return None


def _bearer(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[len("Bearer ") :].strip() or None


def _user_from(token: str, settings: ServerSettings) -> AuthenticatedUser | None:
    payload = verify_access_token(token, settings)
    if payload is None or not payload.get("sub"):
        return None
    return AuthenticatedUser(user_id=str(payload["sub"]), claims=payload)


def authenticate(request: Request) -> AuthenticatedUser | JSONResponse:
    """Authenticate a request. Returns user on success, error JSONResponse on failure.

    Usage in endpoints::

        user = authenticate(request)
        if isinstance(user, JSONResponse):
            return user
    """
    token = _bearer(request)
    if token is None:
        return auth_error("Missing or invalid authentication token", code=AUTH_MISSING_TOKEN)

    user = _user_from(token, request.app.state.settings)
    if user is None:
        return auth_error("Invalid authentication token", code=AUTH_INVALID_TOKEN)
    return user


def optional_identity(request: Request) -> str | None:
    """User id of the caller if a valid access token is presented.

    Missing or unverifiable tokens yield None: token holders may scan
    anonymously, and a stale session must not block an emergency scan.
    """
    token = _bearer(request)
    if token is None:
        return None
    user = _user_from(token, request.app.state.settings)
    if user is None:
        logger.debug("Ignoring unverifiable bearer token on anonymous-capable endpoint")
        return None
    return user.user_id
