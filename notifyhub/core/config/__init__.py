# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for notifyhub.

Example:
    >>> from notifyhub.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from notifyhub.core.config.settings import (
    DatabaseSettings,
    NotificationSettings,
    RedisSettings,
    Settings,
    WorkerSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "NotificationSettings",
    "DatabaseSettings",
    "RedisSettings",
    "WorkerSettings",
]
