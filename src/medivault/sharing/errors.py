# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Error taxonomy for capability-token sharing.

Every error carries a stable ``code`` so the HTTP layer and other callers
can present a distinct reason for each denial instead of a generic
"access denied".
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..core.exceptions import MediVaultException, NotFoundError
from ..core.logging import mask_token
from .tokens import TokenState

if TYPE_CHECKING:
    from .tokens import CapabilityToken


class SharingError(MediVaultException):
    """Base error for sharing operations."""

    code = "SHARING_ERROR"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["code"] = self.code
        return data


class TokenNotFoundError(NotFoundError, SharingError):
    """No token exists with the presented id."""

    code = "NOT_FOUND_TOKEN"

    def __init__(self, token_id: str):
        # Never echo the full bearer secret back into messages or logs
        super().__init__("capability_token", mask_token(token_id))
        self.token_id = token_id


class TokenUnusableError(SharingError):
    """Token exists but fails the validity predicate."""

    code = "TOKEN_UNUSABLE"
    state = TokenState.ACTIVE
    default_message = "This link can no longer be used."

    def __init__(self, token_id: str, message: str | None = None, details: dict[str, Any] | None = None):
        details = dict(details or {})
        details["state"] = self.state.value
        super().__init__(message or self.default_message, details)
        self.token_id = token_id


class TokenExpiredError(TokenUnusableError):
    """Token passed its expiry instant."""

    code = "TOKEN_EXPIRED"
    state = TokenState.EXPIRED
    default_message = "This shared link has expired. Ask the owner to share it again."

    def __init__(self, token_id: str, expires_at: datetime | None = None):
        details = {"expires_at": expires_at.isoformat()} if expires_at else None
        super().__init__(token_id, details=details)
        self.expires_at = expires_at


class TokenRevokedError(TokenUnusableError):
    """Owner revoked the token."""

    code = "TOKEN_REVOKED"
    state = TokenState.REVOKED
    default_message = "This shared link has been revoked by its owner."


class TokenInactiveError(TokenUnusableError):
    """Owner switched the token off."""

    code = "TOKEN_INACTIVE"
    state = TokenState.INACTIVE
    default_message = "This live profile is currently turned off by its owner."


class UnauthorizedError(SharingError):
    """Caller is not the owner of the token it tried to change."""

    code = "FORBIDDEN_NOT_OWNER"

    def __init__(self, token_id: str, caller_id: str | None = None):
        super().__init__(
            "Only the owner of a shared link can change it",
            {"token": mask_token(token_id)},
        )
        self.token_id = token_id
        self.caller_id = caller_id


class ValidationError(SharingError):
    """Malformed issuance or lifecycle input."""

    code = "VALIDATION_INVALID_VALUE"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class AuditWriteFailure(SharingError):
    """An access event could not be written. Absorbed by the auditor."""

    code = "AUDIT_WRITE_FAILED"


_STATE_ERRORS: dict[TokenState, type[TokenUnusableError]] = {
    TokenState.REVOKED: TokenRevokedError,
    TokenState.INACTIVE: TokenInactiveError,
}


def error_for_state(state: TokenState, token: CapabilityToken) -> TokenUnusableError:
    """Map a non-active evaluator verdict to the error the gate raises.

    Raises:
        ValueError: If called with TokenState.ACTIVE
    """
    if state is TokenState.ACTIVE:
        raise ValueError("active tokens have no denial error")
    if state is TokenState.EXPIRED:
        return TokenExpiredError(token.id, token.expires_at)
    return _STATE_ERRORS[state](token.id)
