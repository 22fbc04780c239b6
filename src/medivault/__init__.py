# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""MediVault - capability-token sharing of patient health records."""

__version__ = "0.1.0"
