# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Asyncio dispatch timer.

Registers one sleeping task per scheduled instance. The task wakes at the
dispatch instant and invokes the callback; nothing polls. Re-registering
an ID replaces its previous wake-up.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from notifyhub.utils.datetime import Clock, seconds_until, utc_now

logger = logging.getLogger(__name__)

WakeCallback = Callable[[str], Awaitable[object]]


class DispatchTimer:
    """Schedules wake-ups keyed by instance ID.

    Attributes:
        callback: Coroutine function called with the instance ID when due.
    """

    def __init__(self, callback: WakeCallback, clock: Clock = utc_now) -> None:
        self.callback = callback
        self._clock = clock
        self._tasks: dict[str, asyncio.Task[None]] = {}
        # Tasks past their sleep whose callback is still running
        self._running: set[asyncio.Task[None]] = set()

    def schedule(self, instance_id: str, at: datetime) -> None:
        """Register (or replace) the wake-up for an instance."""
        self.cancel(instance_id)
        delay = seconds_until(at, self._clock())
        task = asyncio.get_running_loop().create_task(
            self._wait(instance_id, delay), name=f"dispatch:{instance_id}"
        )
        self._tasks[instance_id] = task

    def cancel(self, instance_id: str) -> bool:
        """Cancel a pending wake-up. Returns False when none was registered."""
        task = self._tasks.pop(instance_id, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    async def _wait(self, instance_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        task = asyncio.current_task()
        if self._tasks.get(instance_id) is task:
            del self._tasks[instance_id]
        self._running.add(task)
        try:
            await self.callback(instance_id)
        except Exception:
            # The recovery sweep retries anything left in scheduled.
            logger.error("Dispatch wake-up failed for %s", instance_id, exc_info=True)
        finally:
            self._running.discard(task)

    async def drain(self) -> None:
        """Wait until every registered wake-up has fired and finished.

        Includes wake-ups registered by callbacks while draining.
        """
        while True:
            current = asyncio.current_task()
            tasks = [
                t
                for t in (*self._tasks.values(), *self._running)
                if not t.done() and t is not current
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel every pending wake-up and let running callbacks finish."""
        sleeping = list(self._tasks.values())
        self._tasks.clear()
        for task in sleeping:
            task.cancel()
        tasks = [*sleeping, *self._running]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
