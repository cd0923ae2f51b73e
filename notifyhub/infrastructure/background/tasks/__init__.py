# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors for notifyhub.

Usage:
    from notifyhub.infrastructure.background.tasks import sweep_digest_buckets

    sweep_digest_buckets.send()

Running Workers:
    dramatiq notifyhub.infrastructure.background.tasks --processes 2 --threads 4
"""

from notifyhub.infrastructure.background.tasks.notifications import (
    dispatch_due_notifications,
    get_notification_actors,
    sweep_digest_buckets,
)

# Re-export run_async for convenience
from notifyhub.infrastructure.background.tasks.base import get_worker_service, run_async

__all__ = [
    "dispatch_due_notifications",
    "sweep_digest_buckets",
    "get_worker_service",
    "run_async",
    "get_all_actors",
]


def get_all_actors() -> list:
    """Get list of all defined actors."""
    return list(get_notification_actors())
