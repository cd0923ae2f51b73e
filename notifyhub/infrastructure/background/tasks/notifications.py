# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification background tasks for notifyhub.

Periodic sweeps that keep delivery moving when no in-process timer is
armed: draining due digest buckets and dispatching overdue scheduled
notifications after a restart.
"""

import logging
from typing import Any

import dramatiq

from notifyhub.infrastructure.background.broker import Queues, TaskPriority, setup_dramatiq
from notifyhub.infrastructure.background.tasks.base import get_worker_service, run_async
from notifyhub.utils.datetime import format_iso, utc_now
from notifyhub.utils.logging import bind_context, clear_context

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)


@dramatiq.actor(
    queue_name=Queues.DIGESTS,
    max_retries=3,
    time_limit=300000,  # 5 minutes
    priority=TaskPriority.DIGEST,
)
def sweep_digest_buckets() -> dict[str, Any]:
    """Drain every due digest bucket and dispatch it as one delivery.

    Returns:
        Sweep result with the number of buckets dispatched.
    """

    async def _sweep() -> dict[str, Any]:
        now = utc_now()
        service = await get_worker_service()
        dispatched = await service.engine.sweep_digests(now)
        logger.info("Digest sweep at %s dispatched %d buckets", format_iso(now), dispatched)
        return {"swept_at": format_iso(now), "buckets_dispatched": dispatched}

    bind_context(task="sweep_digest_buckets")
    try:
        return run_async(_sweep())
    finally:
        clear_context()


@dramatiq.actor(
    queue_name=Queues.DISPATCH,
    max_retries=3,
    time_limit=120000,  # 2 minutes
    priority=TaskPriority.DISPATCH,
)
def dispatch_due_notifications() -> dict[str, Any]:
    """Hand off every scheduled notification whose dispatch time has passed.

    Returns:
        Sweep result with the number of notifications dispatched.
    """

    async def _dispatch() -> dict[str, Any]:
        now = utc_now()
        service = await get_worker_service()
        dispatched = await service.engine.dispatch_due(now)
        if dispatched:
            logger.info("Due sweep at %s dispatched %d notifications", format_iso(now), dispatched)
        return {"swept_at": format_iso(now), "dispatched": dispatched}

    bind_context(task="dispatch_due_notifications")
    try:
        return run_async(_dispatch())
    finally:
        clear_context()


def get_notification_actors() -> list:
    """Get all notification actors."""
    return [sweep_digest_buckets, dispatch_due_notifications]
