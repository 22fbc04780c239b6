# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Base exceptions shared across MediVault packages.

Sharing-specific failures live in ``medivault.sharing.errors`` and build on
these classes.
"""

from __future__ import annotations


class MediVaultException(Exception):  # noqa: N818
    """Root of every MediVault error; carries a message and a details dict."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class DatabaseException(MediVaultException):
    """Pool, query or migration failure reported by PostgreSQL."""


class NotFoundError(MediVaultException):
    """A looked-up row does not exist."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            {"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
