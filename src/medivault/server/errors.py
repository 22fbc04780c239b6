# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Standardized REST error responses for the MediVault API.

All REST endpoints should use these helpers for consistent error format:
{
    "success": false,
    "error": {
        "code": "ERROR_CODE",
        "message": "Human readable message"
    }
}

Error codes follow the pattern: DOMAIN_SPECIFIC_ERROR
Examples: VALIDATION_MISSING_FIELD, AUTH_INVALID_TOKEN, NOT_FOUND_TOKEN
"""

from __future__ import annotations

import logging
import sys
import traceback
import uuid

from starlette.responses import JSONResponse

from medivault.core.exceptions import MediVaultException
from medivault.sharing.errors import (
    SharingError,
    TokenExpiredError,
    TokenInactiveError,
    TokenNotFoundError,
    TokenRevokedError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# =============================================================================
# STANDARD ERROR CODES
# =============================================================================

# Validation errors (400)
VALIDATION_MISSING_FIELD = "VALIDATION_MISSING_FIELD"
VALIDATION_INVALID_VALUE = ValidationError.code
VALIDATION_INVALID_JSON = "VALIDATION_INVALID_JSON"

# Authentication errors (401)
AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
AUTH_MISSING_TOKEN = "AUTH_MISSING_TOKEN"

# Authorization and token state errors (403)
FORBIDDEN_NOT_OWNER = UnauthorizedError.code
TOKEN_REVOKED = TokenRevokedError.code
TOKEN_INACTIVE = TokenInactiveError.code

# Not found errors (404)
NOT_FOUND_TOKEN = TokenNotFoundError.code
NOT_FOUND_LIVE_PROFILE = "NOT_FOUND_LIVE_PROFILE"

# Gone (410)
TOKEN_EXPIRED = TokenExpiredError.code

# Server errors (500)
INTERNAL_ERROR = "INTERNAL_ERROR"

# Service unavailable (503)
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

# HTTP status for each sharing error, most specific class first
_SHARING_STATUS: list[tuple[type[SharingError], int]] = [
    (TokenNotFoundError, 404),
    (TokenExpiredError, 410),
    (TokenRevokedError, 403),
    (TokenInactiveError, 403),
    (UnauthorizedError, 403),
    (ValidationError, 400),
]


# =============================================================================
# ERROR RESPONSE HELPERS
# =============================================================================


def error_response(
    code: str,
    message: str,
    status_code: int = 400,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code (e.g., VALIDATION_MISSING_FIELD)
        message: Human-readable error message
        status_code: HTTP status code (default 400)

    Returns:
        JSONResponse with standardized error format
    """
    return JSONResponse(
        {
            "success": False,
            "error": {
                "code": code,
                "message": message,
            },
        },
        status_code=status_code,
    )


def validation_error(message: str, code: str = VALIDATION_INVALID_VALUE) -> JSONResponse:
    """Create a 400 validation error response."""
    return error_response(code, message, status_code=400)


def missing_field_error(field_name: str) -> JSONResponse:
    """Create a 400 error for missing required field."""
    return error_response(
        VALIDATION_MISSING_FIELD,
        f"{field_name} is required",
        status_code=400,
    )


def invalid_json_error() -> JSONResponse:
    """Create a 400 error for invalid JSON body."""
    return error_response(VALIDATION_INVALID_JSON, "Invalid JSON body", status_code=400)


def auth_error(message: str = "Authentication failed", code: str = AUTH_INVALID_TOKEN) -> JSONResponse:
    """Create a 401 authentication error response."""
    return error_response(code, message, status_code=401)


def not_found_error(resource: str, code: str = NOT_FOUND_TOKEN) -> JSONResponse:
    """Create a 404 not found error response."""
    return error_response(code, f"{resource} not found", status_code=404)


def sharing_error_response(exc: SharingError) -> JSONResponse:
    """Map a sharing error to its status code and stable error code."""
    for error_type, status_code in _SHARING_STATUS:
        if isinstance(exc, error_type):
            if isinstance(exc, TokenNotFoundError):
                return not_found_error("Shared link")
            return error_response(exc.code, exc.message, status_code=status_code)
    return internal_error(exc=exc)


def internal_error(
    message: str = "Internal server error",
    exc: BaseException | None = None,
    debug: bool = False,
) -> JSONResponse:
    """Create a 500 internal error response.

    Always includes a request_id for log correlation. With ``debug`` set,
    also includes the exception type and message.

    Args:
        message: Base error message.
        exc: Optional exception to extract detail from. If None, the
             exception currently being handled is used.
        debug: Include exception detail in the body.
    """
    request_id = uuid.uuid4().hex[:12]

    error_body: dict = {
        "code": INTERNAL_ERROR,
        "message": message,
        "request_id": request_id,
    }

    if exc is None:
        exc = sys.exc_info()[1]

    if exc is not None:
        logger.error("request_id=%s %s: %s", request_id, type(exc).__name__, exc)
        if debug:
            error_body["exception"] = type(exc).__name__
            error_body["detail"] = str(exc)
            error_body["traceback"] = traceback.format_exception_only(type(exc), exc)[0].strip()

    return JSONResponse(
        {"success": False, "error": error_body},
        status_code=500,
    )


def service_unavailable_error(service: str) -> JSONResponse:
    """Create a 503 service unavailable error response."""
    return error_response(SERVICE_UNAVAILABLE, f"{service} not available", status_code=503)


def medivault_error_response(exc: MediVaultException, debug: bool = False) -> JSONResponse:
    """Error response for any MediVault exception raised by a handler."""
    if isinstance(exc, SharingError):
        return sharing_error_response(exc)
    return internal_error(exc=exc, debug=debug)
