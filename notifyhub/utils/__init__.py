# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Utility functions and helpers for notifyhub.

This package contains cross-cutting utilities:
- logging: Structured logging with structlog
- datetime: Timezone-aware datetime operations
"""

from notifyhub.utils.datetime import (
    Clock,
    days_ago,
    ensure_utc,
    format_iso,
    parse_iso,
    seconds_until,
    utc_now,
)
from notifyhub.utils.logging import bind_context, clear_context, get_logger, setup_logging

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    # Datetime
    "Clock",
    "utc_now",
    "ensure_utc",
    "days_ago",
    "format_iso",
    "parse_iso",
    "seconds_until",
]
