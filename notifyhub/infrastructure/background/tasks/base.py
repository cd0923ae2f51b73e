# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base utilities for Dramatiq tasks.

Thread-Local Event Loop Management:
    Dramatiq workers process tasks on several threads (--threads N).
    SQLAlchemy async engines, asyncpg connections and redis.asyncio pools
    are bound to the event loop they were created on.

    Each worker thread therefore keeps one persistent event loop and its
    own notification service, built on first use with its own database
    engine and Redis client. When a thread's loop is replaced, the
    service built on the old loop is dropped.
"""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any, Coroutine, TypeVar

from notifyhub.utils.logging import setup_logging

if TYPE_CHECKING:
    from notifyhub.core.config.settings import Settings
    from notifyhub.domains.notification.service import NotificationService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Thread-local storage for event loops and per-thread services
_thread_local = threading.local()

# Worker processes configure logging once, from whichever thread builds first
_logging_configured = False
_logging_lock = threading.Lock()


def _clear_thread_service() -> None:
    _thread_local.service = None


def _configure_logging(settings: "Settings") -> None:
    global _logging_configured

    with _logging_lock:
        if not _logging_configured:
            setup_logging(settings)
            _logging_configured = True


def _get_thread_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create a persistent event loop for the current thread.

    Returns:
        Event loop for current thread.
    """
    loop = getattr(_thread_local, "event_loop", None)

    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.event_loop = loop

        # Connections from a previous loop cannot be reused
        _clear_thread_service()

        logger.debug(
            "Created new event loop for thread %s",
            threading.current_thread().name,
        )

    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run async coroutine in sync Dramatiq worker context.

    Args:
        coro: Coroutine to run.

    Returns:
        Result of coroutine.

    Example:
        @dramatiq.actor
        def my_task():
            async def _process():
                service = await get_worker_service()
                return await service.dispatch_due()
            return run_async(_process())
    """
    loop = _get_thread_event_loop()
    return loop.run_until_complete(coro)


async def get_worker_service() -> "NotificationService":
    """Get this thread's notification service, building it on first use.

    Worker services never arm in-process timers; deferred instances are
    picked up by the periodic due-dispatch sweep instead.
    """
    service = getattr(_thread_local, "service", None)
    if service is not None:
        return service

    from notifyhub.core.config import get_settings
    from notifyhub.domains.notification.service import build_notification_service

    settings = get_settings()
    _configure_logging(settings)
    options: dict[str, Any] = {"use_timers": False}

    if settings.notifications.storage_backend == "database":
        from notifyhub.infrastructure.database import (
            create_engine_from_settings,
            create_sessionmaker,
        )

        options["sessionmaker"] = create_sessionmaker(create_engine_from_settings(settings))

    if settings.notifications.digest_backend == "redis":
        from notifyhub.infrastructure.cache import RedisClient

        client = RedisClient(settings)
        await client.connect()
        options["redis_client"] = client

    service = await build_notification_service(settings, **options)
    _thread_local.service = service
    logger.info(
        "Built worker notification service for thread %s",
        threading.current_thread().name,
    )
    return service
