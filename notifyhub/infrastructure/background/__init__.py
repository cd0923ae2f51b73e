# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task infrastructure module for notifyhub.

Provides periodic delivery sweeps with Dramatiq:
- Redis broker (StubBroker when DRAMATIQ_TEST_MODE=true)
- Actors for the digest bucket sweep and the due-dispatch sweep
- APScheduler integration sending those actors at configured intervals

Quick Start:
    from notifyhub.infrastructure.background import setup_dramatiq
    setup_dramatiq()

Running Workers:
    dramatiq notifyhub.infrastructure.background.tasks --processes 2 --threads 4

Scheduler:
    from notifyhub.infrastructure.background import start_scheduler, stop_scheduler

    await start_scheduler()
    await stop_scheduler()
"""

from notifyhub.infrastructure.background.broker import (
    BrokerManager,
    Queues,
    TaskPriority,
    get_broker,
    get_broker_manager,
    setup_dramatiq,
    shutdown_dramatiq,
)
from notifyhub.infrastructure.background.scheduler import (
    DramatiqScheduler,
    ScheduledTask,
    get_scheduler,
    register_default_tasks,
    start_scheduler,
    stop_scheduler,
)

# Task actors are imported lazily: declaring them sets up the broker.
# Use: from notifyhub.infrastructure.background.tasks import sweep_digest_buckets

__all__ = [
    # Broker
    "BrokerManager",
    "Queues",
    "TaskPriority",
    "get_broker",
    "get_broker_manager",
    "setup_dramatiq",
    "shutdown_dramatiq",
    # Scheduler
    "DramatiqScheduler",
    "ScheduledTask",
    "get_scheduler",
    "register_default_tasks",
    "start_scheduler",
    "stop_scheduler",
]
