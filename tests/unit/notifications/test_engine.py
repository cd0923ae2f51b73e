# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for NotificationEngine.

These tests verify the end-to-end notification flow:
1. Eligibility and suppression
2. Quiet-hours deferral and urgent bypass
3. Digest buckets
4. Transport outcomes, retries and reads
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from notifyhub.core.notifications import (
    Channel,
    DeliveryStatus,
    Frequency,
    InvalidTransitionError,
    NotificationEngine,
    NotificationNotFoundError,
    Priority,
    Recipient,
    TransportFailure,
    TransportOutcome,
    TransportReceipt,
)
from notifyhub.core.notifications.engine import REASON_CANCELLED, REASON_NO_ADDRESS
from notifyhub.infrastructure.events import EventTypes

NEXT_MIDNIGHT = datetime(2025, 1, 7, 0, 0, tzinfo=timezone.utc)


def _retryable(detail="gateway timeout"):
    return TransportReceipt(outcome=TransportOutcome.RETRYABLE_FAILURE, detail=detail)


class TestSubmit:
    """Tests for request intake and eligibility."""

    @pytest.mark.asyncio
    async def test_immediate_request_is_handed_off(self, engine, transport, make_request):
        instance_id = await engine.submit(make_request())

        instance = await engine.get_instance(instance_id)
        assert instance.status is DeliveryStatus.SENT
        assert instance.channel is Channel.EMAIL
        assert transport.events[0].instance_ids == [instance_id]
        assert transport.events[0].address == "student@school.example"

    @pytest.mark.asyncio
    async def test_disabled_preference_suppresses_and_records(
        self, engine, transport, preference_store, make_preference, make_request
    ):
        await preference_store.upsert(make_preference(is_enabled=False))

        instance_id = await engine.submit(make_request())

        instance = await engine.get_instance(instance_id)
        assert instance.status is DeliveryStatus.SUPPRESSED
        assert instance.failure_reason == "disabled by user preference"
        assert transport.events == []

    @pytest.mark.asyncio
    async def test_no_address_for_allowed_channels(
        self, engine, preference_store, make_preference, make_request, sample_user_id
    ):
        await preference_store.upsert(make_preference(delivery_channels=frozenset({Channel.SMS})))

        instance_id = await engine.submit(
            make_request(recipient=Recipient(user_id=sample_user_id), requested_channels=[])
        )

        instance = await engine.get_instance(instance_id)
        assert instance.status is DeliveryStatus.SUPPRESSED
        assert instance.failure_reason == REASON_NO_ADDRESS

    @pytest.mark.asyncio
    async def test_first_addressable_channel_wins(
        self, engine, preference_store, make_preference, make_request, sample_user_id
    ):
        """Push ranks first but the recipient has no push token."""
        await preference_store.upsert(make_preference())

        instance_id = await engine.submit(
            make_request(
                recipient=Recipient(user_id=sample_user_id, email="a@school.example"),
                requested_channels=[],
            )
        )

        instance = await engine.get_instance(instance_id)
        assert instance.allowed_channels == [Channel.PUSH, Channel.EMAIL]
        assert instance.channel is Channel.EMAIL

    @pytest.mark.asyncio
    async def test_zone_captured_at_decision_time(
        self, engine, preference_store, make_preference, make_request
    ):
        await preference_store.upsert(make_preference(timezone="Europe/Istanbul"))

        instance_id = await engine.submit(make_request())
        await preference_store.upsert(make_preference(timezone="Asia/Tokyo"))

        instance = await engine.get_instance(instance_id)
        assert instance.timezone == "Europe/Istanbul"


class TestQuietHours:
    """Tests for quiet-hours deferral."""

    @pytest_asyncio.fixture
    async def quiet_preference(self, preference_store, make_preference):
        return await preference_store.upsert(
            make_preference(quiet_hours_start="22:00", quiet_hours_end="08:00", timezone="UTC")
        )

    @pytest.mark.asyncio
    async def test_deferred_until_window_end(
        self, engine, transport, clock, quiet_preference, make_request
    ):
        clock.set(datetime(2025, 1, 6, 23, 0, tzinfo=timezone.utc))

        instance_id = await engine.submit(make_request())

        instance = await engine.get_instance(instance_id)
        assert instance.status is DeliveryStatus.SCHEDULED
        assert instance.scheduled_for == datetime(2025, 1, 7, 8, 0, tzinfo=timezone.utc)
        assert transport.events == []

        clock.set(datetime(2025, 1, 7, 7, 59, tzinfo=timezone.utc))
        assert await engine.dispatch_due() == 0

        clock.set(datetime(2025, 1, 7, 8, 0, tzinfo=timezone.utc))
        assert await engine.dispatch_due() == 1
        assert (await engine.get_instance(instance_id)).status is DeliveryStatus.SENT
        assert len(transport.events) == 1

    @pytest.mark.asyncio
    async def test_urgent_sends_immediately(
        self, engine, transport, clock, quiet_preference, make_request
    ):
        clock.set(datetime(2025, 1, 6, 23, 0, tzinfo=timezone.utc))

        instance_id = await engine.submit(make_request(priority=Priority.URGENT))

        instance = await engine.get_instance(instance_id)
        assert instance.status is DeliveryStatus.SENT
        assert instance.sent_at == clock.now
        assert len(transport.events) == 1

    @pytest.mark.asyncio
    async def test_future_request_evaluated_at_its_own_time(
        self, engine, clock, quiet_preference, make_request
    ):
        """A noon submission for 23:00 lands at the end of that night's window."""
        instance_id = await engine.submit(
            make_request(scheduled_for=datetime(2025, 1, 6, 23, 0, tzinfo=timezone.utc))
        )

        instance = await engine.get_instance(instance_id)
        assert instance.scheduled_for == datetime(2025, 1, 7, 8, 0, tzinfo=timezone.utc)


class TestScheduledDispatch:
    """Tests for future dispatch and recovery sweeps."""

    @pytest.mark.asyncio
    async def test_dispatch_due_is_idempotent(self, engine, transport, clock, make_request):
        await engine.submit(make_request(scheduled_for=clock.now + timedelta(hours=2)))

        assert await engine.dispatch_due() == 0
        clock.advance(hours=2)
        assert await engine.dispatch_due() == 1
        assert await engine.dispatch_due() == 0
        assert len(transport.events) == 1

    @pytest.mark.asyncio
    async def test_early_dispatch_is_refused(self, engine, clock, make_request):
        instance_id = await engine.submit(
            make_request(scheduled_for=clock.now + timedelta(minutes=10))
        )

        assert await engine.dispatch(instance_id) is False

    @pytest.mark.asyncio
    async def test_timer_fires_dispatch(
        self, preference_store, instance_repo, transport, digest_store, event_bus, clock, make_request
    ):
        engine = NotificationEngine(
            preference_store,
            instance_repo,
            transport,
            digest_store,
            event_bus=event_bus,
            clock=clock,
            use_timers=True,
        )
        try:
            instance_id = await engine.submit(
                make_request(scheduled_for=clock.now + timedelta(milliseconds=50))
            )
            await engine.wait_for_timers()

            assert (await engine.get_instance(instance_id)).status is DeliveryStatus.SENT
            assert len(transport.events) == 1
        finally:
            await engine.close()


class TestOutcomes:
    """Tests for transport outcomes and retries."""

    @pytest.mark.asyncio
    async def test_delivered_then_read(self, engine, clock, make_request):
        instance_id = await engine.submit(make_request())

        clock.advance(seconds=3)
        await engine.report_outcome(instance_id, TransportOutcome.DELIVERED)
        clock.advance(minutes=5)
        instance = await engine.report_read(instance_id)

        assert instance.status is DeliveryStatus.READ
        assert instance.scheduled_at <= instance.sent_at <= instance.delivered_at <= instance.read_at

    @pytest.mark.asyncio
    async def test_read_requires_delivery(self, engine, make_request):
        instance_id = await engine.submit(make_request())

        with pytest.raises(InvalidTransitionError):
            await engine.report_read(instance_id)

    @pytest.mark.asyncio
    async def test_unknown_instance(self, engine):
        with pytest.raises(NotificationNotFoundError):
            await engine.report_outcome("missing", TransportOutcome.DELIVERED)

    @pytest.mark.asyncio
    async def test_five_retries_then_final(self, engine, transport, clock, make_request):
        transport.script = [_retryable() for _ in range(6)]

        instance_id = await engine.submit(make_request())
        for expected in range(1, 6):
            instance = await engine.get_instance(instance_id)
            assert instance.retry_count == expected
            assert instance.status is DeliveryStatus.SCHEDULED
            clock.advance(hours=1)
            await engine.dispatch_due()

        instance = await engine.get_instance(instance_id)
        assert len(transport.events) == 6
        assert instance.retry_count == 5
        assert instance.status is DeliveryStatus.FAILED_FINAL
        assert instance.failure_reason == "retry limit reached (5): gateway timeout"

    @pytest.mark.asyncio
    async def test_backoff_schedule(self, engine, transport, clock, make_request):
        transport.script = [_retryable()]

        instance_id = await engine.submit(make_request())

        instance = await engine.get_instance(instance_id)
        assert instance.scheduled_for == clock.now + timedelta(seconds=2)

    @pytest.mark.asyncio
    async def test_final_transport_failure(self, engine, transport, make_request):
        transport.script = [TransportFailure("mailbox does not exist", retryable=False)]

        instance_id = await engine.submit(make_request())

        instance = await engine.get_instance(instance_id)
        assert instance.status is DeliveryStatus.FAILED_FINAL
        assert instance.failure_reason == "mailbox does not exist"
        assert instance.retry_count == 0

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_is_retried(self, engine, transport, make_request):
        transport.script = [RuntimeError("socket closed")]

        instance_id = await engine.submit(make_request())

        instance = await engine.get_instance(instance_id)
        assert instance.status is DeliveryStatus.SCHEDULED
        assert instance.retry_count == 1
        assert instance.failure_reason is None
        assert instance.status_log[-2].reason == "transport error: socket closed"


class TestDigests:
    """Tests for digest bucketing and sweeps."""

    @pytest_asyncio.fixture
    async def daily_digest(self, preference_store, make_preference):
        return await preference_store.upsert(make_preference(frequency=Frequency.DAILY_DIGEST))

    @pytest.mark.asyncio
    async def test_members_dispatched_together_in_creation_order(
        self, engine, transport, clock, daily_digest, make_request
    ):
        ids = []
        for subject in ("first", "second", "third"):
            ids.append(await engine.submit(make_request(subject=subject, content=subject.upper())))
            clock.advance(minutes=1)

        assert transport.events == []
        clock.set(NEXT_MIDNIGHT - timedelta(seconds=1))
        assert await engine.sweep_digests() == 0

        clock.set(NEXT_MIDNIGHT)
        assert await engine.sweep_digests() == 1

        (event,) = transport.events
        assert event.is_digest
        assert event.instance_ids == ids
        assert event.subject == "3 announcement notifications"
        assert event.content == "first: FIRST\nsecond: SECOND\nthird: THIRD"
        for instance_id in ids:
            assert (await engine.get_instance(instance_id)).status is DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, engine, transport, clock, daily_digest, make_request):
        await engine.submit(make_request())
        clock.set(NEXT_MIDNIGHT)

        assert await engine.sweep_digests() == 1
        assert await engine.sweep_digests() == 0
        assert len(transport.events) == 1

    @pytest.mark.asyncio
    async def test_cancelled_member_left_out(
        self, engine, transport, clock, daily_digest, digest_store, make_request
    ):
        keep = await engine.submit(make_request())
        dropped = await engine.submit(make_request())

        instance = await engine.cancel(dropped)
        clock.set(NEXT_MIDNIGHT)
        await engine.sweep_digests()

        assert instance.status is DeliveryStatus.SUPPRESSED
        assert instance.failure_reason == REASON_CANCELLED
        assert transport.events[0].instance_ids == [keep]

    @pytest.mark.asyncio
    async def test_urgent_bypasses_digest(self, engine, transport, daily_digest, make_request):
        instance_id = await engine.submit(make_request(priority=Priority.URGENT))

        instance = await engine.get_instance(instance_id)
        assert instance.digest_bucket is None
        assert instance.status is DeliveryStatus.SENT
        assert len(transport.events) == 1

    @pytest.mark.asyncio
    async def test_failed_digest_member_retries_alone(
        self, engine, transport, clock, daily_digest, make_request
    ):
        transport.script = [_retryable()]
        ids = [await engine.submit(make_request()) for _ in range(2)]
        clock.set(NEXT_MIDNIGHT)

        await engine.sweep_digests()
        clock.advance(minutes=1)
        assert await engine.dispatch_due() == 2

        assert [len(e.instances) for e in transport.events] == [2, 1, 1]
        for instance_id in ids:
            instance = await engine.get_instance(instance_id)
            assert instance.digest_bucket is None
            assert instance.retry_count == 1


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_scheduled(self, engine, transport, clock, make_request):
        instance_id = await engine.submit(make_request(scheduled_for=clock.now + timedelta(hours=1)))

        await engine.cancel(instance_id)
        clock.advance(hours=2)

        assert await engine.dispatch_due() == 0
        assert transport.events == []

    @pytest.mark.asyncio
    async def test_cannot_cancel_after_hand_off(self, engine, make_request):
        instance_id = await engine.submit(make_request())

        with pytest.raises(InvalidTransitionError):
            await engine.cancel(instance_id)


class TestBulkSubmit:
    """Tests for bulk submission."""

    @pytest.mark.asyncio
    async def test_counts_each_outcome(
        self, engine, instance_repo, preference_store, make_preference, make_request
    ):
        await preference_store.upsert(make_preference(user_id="muted-user", is_enabled=False))
        original_add = instance_repo.add
        calls = []

        async def flaky_add(instance):
            calls.append(instance.id)
            if len(calls) == 2:
                raise RuntimeError("database unavailable")
            await original_add(instance)

        instance_repo.add = flaky_add

        result = await engine.submit_bulk(
            [
                make_request(),
                make_request(user_id="other-user"),
                make_request(user_id="muted-user"),
            ]
        )

        assert result.queued == 1
        assert result.failed == 1
        assert result.suppressed == 1
        assert len(result.instance_ids) == 2
        assert "database unavailable" in result.errors[0]


class TestLifecycleEvents:
    """Tests for events published on status changes."""

    @pytest.mark.asyncio
    async def test_events_follow_status_changes(self, engine, event_bus, make_request):
        seen = []

        async def record(event):
            seen.append(event.event_type)

        event_bus.subscribe(EventTypes.Notification.ALL, record)

        instance_id = await engine.submit(make_request())
        await engine.report_outcome(instance_id, TransportOutcome.DELIVERED)

        assert seen == [
            EventTypes.Notification.SCHEDULED,
            EventTypes.Notification.SENT,
            EventTypes.Notification.DELIVERED,
        ]

    @pytest.mark.asyncio
    async def test_suppression_event_carries_tenant(
        self, engine, event_bus, preference_store, make_preference, make_request, sample_tenant_id
    ):
        seen = []

        async def record(event):
            seen.append(event)

        event_bus.subscribe(EventTypes.Notification.SUPPRESSED, record)
        await preference_store.upsert(make_preference(is_enabled=False))

        await engine.submit(make_request())

        assert len(seen) == 1
        assert seen[0].tenant_id == sample_tenant_id
        assert seen[0].payload["status"] == "suppressed"
