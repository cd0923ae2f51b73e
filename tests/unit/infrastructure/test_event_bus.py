# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the in-process event bus."""

import pytest

from notifyhub.infrastructure.events import (
    EventBus,
    EventTypes,
    event_for_status,
    get_event_bus,
    reset_event_bus,
)


class TestEventBus:
    """Tests for EventBus."""

    @pytest.mark.asyncio
    async def test_exact_and_pattern_subscriptions(self):
        bus = EventBus()
        exact, wildcard = [], []

        async def on_sent(event):
            exact.append(event.event_type)

        async def on_any(event):
            wildcard.append(event.event_type)

        bus.subscribe(EventTypes.Notification.SENT, on_sent)
        bus.subscribe(EventTypes.Notification.ALL, on_any)

        await bus.publish(EventTypes.Notification.SENT, {"id": "n-1"})
        await bus.publish(EventTypes.Notification.READ, {"id": "n-1"})

        assert exact == ["notification.sent"]
        assert wildcard == ["notification.sent", "notification.read"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self, caplog):
        bus = EventBus()
        received = []

        async def broken(event):
            raise RuntimeError("handler bug")

        async def healthy(event):
            received.append(event.payload)

        bus.subscribe("notification.*", broken)
        bus.subscribe("notification.*", healthy)

        event = await bus.publish("notification.failed", {"id": "n-2"}, tenant_id="t-1")

        assert received == [{"id": "n-2"}]
        assert event.tenant_id == "t-1"
        assert "Handler error" in caplog.text

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe("notification.sent", handler)

        assert bus.unsubscribe("notification.sent", handler) is True
        assert bus.unsubscribe("notification.sent", handler) is False
        await bus.publish("notification.sent", {})
        assert received == []

    @pytest.mark.asyncio
    async def test_stats(self):
        bus = EventBus()

        async def handler(event):
            pass

        bus.subscribe("notification.*", handler)
        bus.subscribe("notification.sent", handler)
        await bus.publish("notification.sent", {})

        assert bus.get_stats() == {
            "subscriptions": 2,
            "patterns": ["notification.*"],
            "events_published": 1,
        }


class TestEventForStatus:
    """Tests for status-to-event mapping."""

    def test_known_status(self):
        assert event_for_status("failed_final") == EventTypes.Notification.FAILED

    def test_pending_has_no_event(self):
        assert event_for_status("pending") is None


def test_singleton_reset():
    first = get_event_bus()
    reset_event_bus()

    assert get_event_bus() is not first
