# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process event bus for notification lifecycle events.

The engine publishes one event per status change it makes; subscribers
(audit trails, websocket fan-out, metrics) react without the engine
knowing about them. Subscriptions take an exact event type or an
fnmatch pattern such as ``notification.*``.

Example:
    from notifyhub.infrastructure.events import EventTypes, get_event_bus

    bus = get_event_bus()

    async def on_failed(event):
        print(event.payload["failure_reason"])

    bus.subscribe(EventTypes.Notification.FAILED, on_failed)
    bus.subscribe("notification.*", audit_handler)
"""

import asyncio
import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import uuid4

from notifyhub.utils.datetime import format_iso, utc_now

logger = logging.getLogger(__name__)

EventHandler = Callable[["EventData"], Awaitable[None]]


@dataclass
class EventData:
    """A published event.

    Attributes:
        event_type: Dotted event type, e.g. ``notification.sent``.
        payload: Event body; for notifications the instance as a dict.
        event_id: Unique event identifier.
        timestamp: When the event was published.
        tenant_id: Tenant the event belongs to.
    """

    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    tenant_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "timestamp": format_iso(self.timestamp),
            "tenant_id": self.tenant_id,
        }


def _is_pattern(event_type: str) -> bool:
    return any(c in event_type for c in "*?[")


class EventBus:
    """Async publish/subscribe with wildcard subscriptions.

    Handlers for one event run concurrently. A failing handler is logged
    and never affects the publisher or other handlers.

    Designed for single-process async use; it is not a durable queue.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._published = 0

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event type or pattern."""
        self._subscriptions.append((event_type, handler))
        logger.debug("Subscribed %s to %s", getattr(handler, "__name__", handler), event_type)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Remove a subscription. Returns False if it did not exist."""
        try:
            self._subscriptions.remove((event_type, handler))
        except ValueError:
            return False
        return True

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for subscribed, handler in self._subscriptions:
            if subscribed == event_type or (
                _is_pattern(subscribed) and fnmatch.fnmatchcase(event_type, subscribed)
            ):
                matched.append(handler)
        return matched

    async def publish(
        self,
        event_type: str,
        payload: dict[str, Any],
        tenant_id: str | None = None,
    ) -> EventData:
        """Publish an event to every matching subscriber.

        Args:
            event_type: The event type string.
            payload: Event data dictionary.
            tenant_id: Tenant the event belongs to.

        Returns:
            The published EventData.
        """
        event = EventData(event_type=event_type, payload=payload, tenant_id=tenant_id)
        self._published += 1

        handlers = self.handlers_for(event_type)
        if not handlers:
            return event

        async def safe_call(handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception:
                logger.error("Handler error for event %s", event_type, exc_info=True)

        await asyncio.gather(*(safe_call(h) for h in handlers))
        return event

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._subscriptions.clear()

    def get_stats(self) -> dict[str, Any]:
        """Subscription and publish counters."""
        return {
            "subscriptions": len(self._subscriptions),
            "patterns": sorted({t for t, _ in self._subscriptions if _is_pattern(t)}),
            "events_published": self._published,
        }


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the singleton event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the event bus singleton. Used by tests."""
    global _event_bus
    if _event_bus is not None:
        _event_bus.clear()
    _event_bus = None
