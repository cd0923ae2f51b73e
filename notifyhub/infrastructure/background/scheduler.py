# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Periodic sending of the notification sweep actors.

An APScheduler ``AsyncIOScheduler`` sends Dramatiq actors on interval or
cron triggers. By default it runs the due-dispatch sweep and the digest
bucket sweep at the intervals in NotificationSettings. Jobs coalesce and
never overlap themselves, so a stalled scheduler sends one catch-up
message instead of a burst.

Only one process per deployment should run the scheduler; the actors it
sends are consumed by every worker.

Example:
    from notifyhub.infrastructure.background.scheduler import start_scheduler

    scheduler = await start_scheduler()
    ...
    await stop_scheduler()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from notifyhub.core.config import get_settings
from notifyhub.utils.datetime import format_iso, utc_now

logger = logging.getLogger(__name__)

ActorLookup = Callable[[str], Callable[..., Any] | None]


@dataclass
class ScheduledTask:
    """A Dramatiq actor sent on a trigger.

    Attributes:
        name: Display name.
        actor_name: Attribute name of the actor in the tasks package.
        trigger: APScheduler trigger deciding when the actor is sent.
        schedule: Human-readable form of the trigger.
        run_on_start: Send once as soon as the scheduler starts.
    """

    name: str
    actor_name: str
    trigger: BaseTrigger
    schedule: str
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)
    run_on_start: bool = False
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "actor_name": self.actor_name,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "last_run": format_iso(self.last_run),
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


def _default_actor_lookup(actor_name: str) -> Callable[..., Any] | None:
    from notifyhub.infrastructure.background import tasks

    return getattr(tasks, actor_name, None)


class DramatiqScheduler:
    """Sends Dramatiq actors on interval or cron triggers.

    Tasks may be added before start(); their jobs are registered when the
    scheduler starts.
    """

    def __init__(self, actor_lookup: ActorLookup = _default_actor_lookup) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._actor_lookup = actor_lookup

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _register_job(self, task: ScheduledTask) -> None:
        if self._scheduler is None or not task.enabled:
            return
        options: dict[str, Any] = {}
        if task.run_on_start:
            options["next_run_time"] = utc_now()
        self._scheduler.add_job(
            self._execute_task,
            trigger=task.trigger,
            args=[task.id],
            id=task.id,
            name=task.name,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
            **options,
        )

    def _add(self, task: ScheduledTask) -> ScheduledTask:
        self._tasks[task.id] = task
        self._register_job(task)
        logger.info("Scheduled %s -> %s (%s)", task.name, task.actor_name, task.schedule)
        return task

    def add_cron_task(
        self,
        name: str,
        actor_name: str,
        cron_expression: str,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> ScheduledTask:
        """Send an actor on a five-field crontab expression, evaluated in UTC.

        Raises:
            ValueError: If the expression cannot be parsed.
        """
        try:
            trigger = CronTrigger.from_crontab(cron_expression, timezone=timezone.utc)
        except ValueError as e:
            raise ValueError(f"Invalid cron expression: {cron_expression}") from e

        return self._add(
            ScheduledTask(
                name=name,
                actor_name=actor_name,
                trigger=trigger,
                schedule=f"cron {cron_expression}",
                args=args,
                kwargs=kwargs or {},
                enabled=enabled,
            )
        )

    def add_interval_task(
        self,
        name: str,
        actor_name: str,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledTask:
        """Send an actor at a fixed interval.

        Raises:
            ValueError: If the interval is not positive.
        """
        total = seconds + 60 * minutes + 3600 * hours
        if total <= 0:
            raise ValueError(f"Interval for {name} must be positive")

        return self._add(
            ScheduledTask(
                name=name,
                actor_name=actor_name,
                trigger=IntervalTrigger(seconds=total, timezone=timezone.utc),
                schedule=f"every {total}s",
                args=args,
                kwargs=kwargs or {},
                enabled=enabled,
                run_on_start=start_immediately,
            )
        )

    async def _execute_task(self, task_id: str) -> None:
        """Send one task's actor; failures are counted, never raised."""
        task = self._tasks.get(task_id)
        if task is None or not task.enabled:
            return

        actor = self._actor_lookup(task.actor_name)
        if actor is None:
            task.error_count += 1
            logger.error("Scheduled task %s: actor %s not found", task.name, task.actor_name)
            return

        try:
            actor.send(*task.args, **task.kwargs)
        except Exception:
            # The broker being down must not stop the scheduler loop
            task.error_count += 1
            logger.error("Scheduled task %s could not be sent", task.name, exc_info=True)
            return

        task.last_run = utc_now()
        task.run_count += 1

    def remove_task(self, task_id: str) -> bool:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(task_id)
            except JobLookupError:
                logger.debug("No job registered for task %s", task_id)
        logger.info("Removed scheduled task %s", task.name)
        return True

    def enable_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.enabled = True
        self._register_job(task)
        return True

    def disable_task(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.enabled = False
        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(task_id)
            except JobLookupError:
                logger.debug("No job registered for task %s", task_id)
        return True

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    def has_job(self, task_id: str) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(task_id) is not None

    async def start(self) -> None:
        """Start on the running event loop and register every enabled task."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        for task in self._tasks.values():
            self._register_job(task)
        self._scheduler.start()
        logger.info("Sweep scheduler started with %d tasks", len(self._tasks))

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Sweep scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        tasks = list(self._tasks.values())
        return {
            "is_running": self.is_running,
            "task_count": len(tasks),
            "enabled_count": sum(1 for t in tasks if t.enabled),
            "total_runs": sum(t.run_count for t in tasks),
            "total_errors": sum(t.error_count for t in tasks),
            "tasks": [t.to_dict() for t in tasks],
        }


_scheduler: DramatiqScheduler | None = None


def get_scheduler() -> DramatiqScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DramatiqScheduler()
    return _scheduler


def register_default_tasks(scheduler: DramatiqScheduler) -> None:
    """Register the due-dispatch and digest sweeps at their configured intervals.

    The due-dispatch sweep also runs at start to recover instances whose
    wake-up was lost while no scheduler was running.
    """
    config = get_settings().notifications

    scheduler.add_interval_task(
        name="Due notification dispatch",
        actor_name="dispatch_due_notifications",
        seconds=config.dispatch_sweep_interval_seconds,
        start_immediately=True,
    )
    scheduler.add_interval_task(
        name="Digest bucket sweep",
        actor_name="sweep_digest_buckets",
        seconds=config.digest_sweep_interval_seconds,
    )


async def start_scheduler() -> DramatiqScheduler:
    """Start the process scheduler with the default sweeps.

    Returns the idle scheduler when WORKER_SCHEDULER_ENABLED is false.
    """
    scheduler = get_scheduler()
    if not get_settings().worker.scheduler_enabled:
        logger.info("Sweep scheduler disabled by configuration")
        return scheduler

    if not scheduler.list_tasks():
        register_default_tasks(scheduler)
    await scheduler.start()
    return scheduler


async def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
