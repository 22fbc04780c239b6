# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""HTTP API for MediVault sharing."""

from .app import create_app, run
from .config import ServerSettings, get_settings

__all__ = ["create_app", "run", "ServerSettings", "get_settings"]
