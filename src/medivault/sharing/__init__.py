# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Capability-token sharing of owner health data.

Owners issue unguessable tokens embedded in QR links; holders present them
to the access gate, which checks validity on every access, resolves the
bound scope and audits the attempt.
"""

from .audit import AccessAuditor
from .errors import (
    AuditWriteFailure,
    SharingError,
    TokenExpiredError,
    TokenInactiveError,
    TokenNotFoundError,
    TokenRevokedError,
    TokenUnusableError,
    UnauthorizedError,
    ValidationError,
    error_for_state,
)
from .gate import AccessGate, AccessGrant
from .issuer import TokenIssuer
from .lifecycle import TokenLifecycle
from .persistence import InMemoryPersistence, Persistence, PostgresPersistence
from .resolver import ScopeResolver
from .resources import PersistenceResourceDirectory, Resource, ResourceDirectory, ResourceKind
from .service import SharingService, TokenSummary
from .tokens import (
    AccessEvent,
    CapabilityToken,
    ScopeKind,
    TokenState,
    build_qr_image_url,
    build_share_url,
)
from .validity import evaluate, is_usable

__all__ = [
    # Model
    "CapabilityToken",
    "AccessEvent",
    "ScopeKind",
    "TokenState",
    "build_share_url",
    "build_qr_image_url",
    "Resource",
    "ResourceKind",
    "ResourceDirectory",
    "PersistenceResourceDirectory",
    # Errors
    "SharingError",
    "TokenNotFoundError",
    "TokenUnusableError",
    "TokenExpiredError",
    "TokenRevokedError",
    "TokenInactiveError",
    "UnauthorizedError",
    "ValidationError",
    "AuditWriteFailure",
    "error_for_state",
    # Components
    "evaluate",
    "is_usable",
    "Persistence",
    "InMemoryPersistence",
    "PostgresPersistence",
    "TokenIssuer",
    "ScopeResolver",
    "AccessAuditor",
    "AccessGate",
    "AccessGrant",
    "TokenLifecycle",
    "SharingService",
    "TokenSummary",
]
