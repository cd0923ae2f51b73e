# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for notifyhub.

This package contains the services callers use. Each domain module
validates input, orchestrates the core engine and returns response schemas.

Domains:
    notification: Sending, preferences, delivery outcomes and history.
"""
