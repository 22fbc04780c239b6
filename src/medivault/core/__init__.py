# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Ambient services shared by every MediVault package: config, errors, logging."""

from .config import CoreSettings, clear_config_cache, get_config, set_config
from .exceptions import DatabaseException, MediVaultException, NotFoundError
from .logging import configure_logging, correlation_context, mask_token

__all__ = [
    "CoreSettings",
    "get_config",
    "set_config",
    "clear_config_cache",
    "MediVaultException",
    "DatabaseException",
    "NotFoundError",
    "configure_logging",
    "correlation_context",
    "mask_token",
]
