# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq broker for the notification sweeps.

Workers share one Redis broker whose queue keys live under the configured
namespace (``WORKER_BROKER_NAMESPACE``). With DRAMATIQ_TEST_MODE set a
StubBroker is used instead, so the sweep actors can be declared and
inspected without a Redis server.

Example:
    from notifyhub.infrastructure.background.broker import setup_dramatiq

    broker = setup_dramatiq()
"""

import logging
import os
from typing import Any

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from redis.exceptions import RedisError

from notifyhub.core.config import get_settings

logger = logging.getLogger(__name__)


class Queues:
    """Queues the sweep actors are routed to."""

    DEFAULT = "default"
    DISPATCH = "notification_dispatch"
    DIGESTS = "notification_digests"

    @classmethod
    def all(cls) -> list[str]:
        return [cls.DEFAULT, cls.DISPATCH, cls.DIGESTS]


class TaskPriority:
    """Dramatiq message priorities; lower runs first.

    Overdue dispatches run before digest sweeps.
    """

    DISPATCH = 1
    DIGEST = 3
    MAINTENANCE = 5


def is_test_mode() -> bool:
    return os.getenv("DRAMATIQ_TEST_MODE", "false").lower() == "true"


class BrokerManager:
    """Owns the process broker and the sweep queues declared on it."""

    def __init__(self) -> None:
        self._broker: dramatiq.Broker | None = None

    @property
    def broker(self) -> dramatiq.Broker:
        """Get the configured broker.

        Raises:
            RuntimeError: If setup() has not run.
        """
        if self._broker is None:
            raise RuntimeError("Broker not initialized. Call setup() first.")
        return self._broker

    @property
    def is_initialized(self) -> bool:
        return self._broker is not None

    def setup(self) -> dramatiq.Broker:
        """Create the broker, declare the sweep queues and install it globally.

        Calling it again returns the existing broker.
        """
        if self._broker is not None:
            return self._broker

        if is_test_mode():
            broker: dramatiq.Broker = StubBroker()
            broker.emit_after("process_boot")
            logger.info("Using StubBroker for notification sweeps")
        else:
            settings = get_settings()
            broker = RedisBroker(
                url=settings.redis.url, namespace=settings.worker.broker_namespace
            )
            logger.info(
                "Redis broker for notification sweeps at %s (namespace %s)",
                settings.redis.url.split("@")[-1],
                settings.worker.broker_namespace,
            )

        for queue in Queues.all():
            broker.declare_queue(queue)
        dramatiq.set_broker(broker)
        self._broker = broker
        return broker

    def shutdown(self) -> None:
        if self._broker is not None:
            self._broker.close()
            self._broker = None
            logger.info("Broker shutdown complete")

    def get_queue_stats(self) -> dict[str, Any]:
        """Report the backlog of every sweep queue.

        Returns:
            Broker type, status and message count per queue.
        """
        if self._broker is None:
            return {"status": "not_initialized"}

        if isinstance(self._broker, StubBroker):
            return {
                "broker_type": "stub",
                "status": "healthy",
                "queues": {q: self._broker.queues[q].qsize() for q in Queues.all()},
            }

        stats: dict[str, Any] = {"broker_type": "redis"}
        try:
            stats["queues"] = {
                q: self._broker.client.llen(f"{self._broker.namespace}:{q}")
                for q in Queues.all()
            }
            stats["status"] = "healthy"
        except RedisError as e:
            logger.warning("Could not read sweep queue sizes: %s", e)
            stats["status"] = "error"
            stats["error"] = str(e)
        return stats


_broker_manager: BrokerManager | None = None


def get_broker_manager() -> BrokerManager:
    global _broker_manager
    if _broker_manager is None:
        _broker_manager = BrokerManager()
    return _broker_manager


def setup_dramatiq() -> dramatiq.Broker:
    """Set up the broker; must run before the sweep actors are declared."""
    return get_broker_manager().setup()


def get_broker() -> dramatiq.Broker:
    return get_broker_manager().broker


def shutdown_dramatiq() -> None:
    global _broker_manager
    if _broker_manager is not None:
        _broker_manager.shutdown()
        _broker_manager = None
