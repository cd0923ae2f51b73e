# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification engine orchestrating eligibility, scheduling and delivery.

This service handles the complete notification flow:
1. Resolving the recipient's effective preference
2. Deciding eligibility, allowed channels and quiet-hours deferral
3. Scheduling immediate, deferred or digested dispatch
4. Handing dispatch events to the transport exactly once per attempt
5. Applying transport outcomes, retries and reads

Every instance moves under its own lock; digest members move together
under their bucket's lock. Lock order is always bucket, then instance.
Those locks only order work inside one engine. Every write is also
conditional on the status and retry count that were loaded, so when
engines in several processes race for an instance exactly one of them
applies the transition.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from notifyhub.core.notifications.digest import DigestBucketStore, InMemoryDigestBucketStore
from notifyhub.core.notifications.eligibility import EligibilityResolver
from notifyhub.core.notifications.exceptions import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    NotificationNotFoundError,
    TransportFailure,
)
from notifyhub.core.notifications.locks import KeyedLock
from notifyhub.core.notifications.models import (
    Channel,
    DeliveryStatus,
    NotificationInstance,
    NotificationRequest,
    TransportOutcome,
)
from notifyhub.core.notifications.preferences import PreferenceStore
from notifyhub.core.notifications.repository import InstanceRepository, StoredState
from notifyhub.core.notifications.scheduler import BucketKey, DispatchScheduler
from notifyhub.core.notifications.state_machine import DeliveryStateMachine, check_transition
from notifyhub.core.notifications.timers import DispatchTimer
from notifyhub.core.notifications.transport import DispatchEvent, Transport
from notifyhub.infrastructure.events import EventBus, EventTypes, event_for_status, get_event_bus
from notifyhub.utils.datetime import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

REASON_NO_ADDRESS = "no recipient address for allowed channels"
REASON_DIGEST_ENQUEUE_FAILED = "digest enqueue failed"
REASON_CANCELLED = "cancelled"

# Wake-ups may fire marginally before the wall clock reaches the due instant.
TIMER_TOLERANCE = timedelta(seconds=1)


@dataclass
class BulkSubmitResult:
    """Result of submitting one notification to many recipients.

    Attributes:
        queued: Requests accepted and scheduled.
        suppressed: Requests accepted but suppressed by eligibility.
        failed: Requests that raised.
        instance_ids: IDs of every recorded instance, in request order.
        errors: One message per failed request.
    """

    queued: int = 0
    suppressed: int = 0
    failed: int = 0
    instance_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "queued": self.queued,
            "suppressed": self.suppressed,
            "failed": self.failed,
            "instance_ids": list(self.instance_ids),
            "errors": list(self.errors),
        }


class NotificationEngine:
    """Decides whether, where and when to notify, then drives delivery.

    Attributes:
        preferences: Preference store consulted for every request.
        instances: Instance repository.
        transport: Receives dispatch events.
        digests: Digest bucket store.
        resolver: Eligibility resolver.
        scheduler: Dispatch scheduler.
        state_machine: Applies every status change.
    """

    def __init__(
        self,
        preferences: PreferenceStore,
        instances: InstanceRepository,
        transport: Transport,
        digests: DigestBucketStore | None = None,
        *,
        state_machine: DeliveryStateMachine | None = None,
        event_bus: EventBus | None = None,
        clock: Clock = utc_now,
        default_timezone: str = "UTC",
        use_timers: bool = False,
        dispatch_batch_size: int = 500,
    ) -> None:
        """Initialize the engine.

        Args:
            preferences: Preference store.
            instances: Instance repository.
            transport: Transport receiving dispatch events.
            digests: Bucket store; in-memory when omitted.
            state_machine: State machine with its retry policy.
            event_bus: Bus for lifecycle events; the process bus when omitted.
            clock: Source of the current instant.
            default_timezone: Zone used for unknown or missing zones.
            use_timers: Arm asyncio wake-ups for future dispatches. Without
                timers, dispatch_due() must be called periodically.
            dispatch_batch_size: Maximum instances per dispatch_due() call.
        """
        self.preferences = preferences
        self.instances = instances
        self.transport = transport
        self.digests = digests or InMemoryDigestBucketStore()
        self.resolver = EligibilityResolver(preferences, default_timezone)
        self.scheduler = DispatchScheduler()
        self.state_machine = state_machine or DeliveryStateMachine()
        self._events = event_bus or get_event_bus()
        self._clock = clock
        self._instance_locks = KeyedLock()
        self._bucket_locks = KeyedLock()
        self._timer = DispatchTimer(self._on_timer, clock) if use_timers else None
        self._dispatch_batch_size = dispatch_batch_size

        logger.info(
            "NotificationEngine initialized (timers=%s, max_retries=%d)",
            use_timers,
            self.state_machine.retry_policy.max_retries,
        )

    # Inbound

    async def submit(self, request: NotificationRequest) -> str:
        """Accept a notification request and record its instance.

        The instance is always recorded, suppressed ones included.
        Instances due now are handed off before this returns.

        Args:
            request: The notification request.

        Returns:
            The new instance ID.
        """
        now = self._clock()
        instance = NotificationInstance(
            id=str(uuid4()),
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            notification_type=request.notification_type,
            content=request.content,
            recipient=request.recipient,
            created_at=now,
            priority=request.priority,
            subject=request.subject,
            template_type=request.template_type,
            template_ref=request.template_ref,
            requested_channels=list(request.requested_channels),
            scheduled_for=ensure_utc(request.scheduled_for),
            metadata=dict(request.metadata),
        )

        evaluate_at = now
        if instance.scheduled_for is not None and instance.scheduled_for > now:
            evaluate_at = instance.scheduled_for

        decision = await self.resolver.evaluate(
            user_id=request.user_id,
            notification_type=request.notification_type,
            template_type=request.template_type,
            requested_channels=request.requested_channels,
            at=evaluate_at,
            priority=request.priority,
            tenant_id=request.tenant_id,
        )
        instance.timezone = decision.zone_name
        instance.allowed_channels = list(decision.allowed_channels)

        if not decision.should_send:
            return await self._record_suppressed(instance, decision.reason or "not eligible", now)

        channel = self._choose_channel(instance)
        if channel is None:
            return await self._record_suppressed(instance, REASON_NO_ADDRESS, now)
        instance.channel = channel

        plan = self.scheduler.schedule(decision, instance, now)
        self.state_machine.schedule(instance, plan.dispatch_at, now)
        if plan.bucket is not None:
            instance.digest_bucket = str(plan.bucket)
        await self.instances.add(instance)

        if plan.bucket is not None:
            await self._enqueue_digest(instance, plan.bucket, plan.dispatch_at)

        logger.info(
            "Notification %s scheduled for %s via %s%s",
            instance.id,
            plan.dispatch_at.isoformat(),
            channel.value,
            f" (digest {plan.bucket})" if plan.bucket else "",
        )
        await self._publish(instance)

        if plan.bucket is None:
            if plan.dispatch_at <= now:
                await self.dispatch(instance.id, now)
            else:
                self._arm(instance.id, plan.dispatch_at)
        return instance.id

    async def submit_bulk(self, requests: list[NotificationRequest]) -> BulkSubmitResult:
        """Submit many requests; one failing request never blocks the rest."""
        result = BulkSubmitResult()
        for request in requests:
            try:
                instance_id = await self.submit(request)
            except Exception as e:
                logger.error(
                    "Bulk submit failed for user %s", request.user_id, exc_info=True
                )
                result.failed += 1
                result.errors.append(f"{request.user_id}: {e}")
                continue

            result.instance_ids.append(instance_id)
            instance = await self.instances.get(instance_id)
            if instance is not None and instance.status is DeliveryStatus.SUPPRESSED:
                result.suppressed += 1
            else:
                result.queued += 1

        logger.info(
            "Bulk submit: %d queued, %d suppressed, %d failed",
            result.queued,
            result.suppressed,
            result.failed,
        )
        return result

    async def report_outcome(
        self,
        instance_id: str,
        outcome: TransportOutcome,
        detail: str | None = None,
        at: datetime | None = None,
    ) -> NotificationInstance:
        """Apply a transport outcome to a sent instance.

        Raises:
            NotificationNotFoundError: If the instance does not exist.
            InvalidTransitionError: If the instance is not in ``sent``.
            ConcurrentUpdateError: If another writer moved it meanwhile.
        """
        retry_at: datetime | None = None
        reason: str | None = None
        async with self._instance_locks.hold(instance_id):
            instance = await self._load(instance_id)
            expected = StoredState.of(instance)
            when = ensure_utc(at) or self._clock()
            if outcome is TransportOutcome.DELIVERED:
                self.state_machine.mark_delivered(instance, when)
            else:
                failure = self.state_machine.record_failure(instance, outcome, detail, when)
                retry_at, reason = failure.retry_at, failure.reason
            await self._write(instance, expected)

        if retry_at is not None:
            logger.warning(
                "Notification %s failed (%s), retry %d at %s",
                instance_id,
                reason,
                instance.retry_count,
                retry_at.isoformat(),
            )
            await self._publish(instance, EventTypes.Notification.RETRYING)
            self._arm(instance_id, retry_at)
        elif instance.status is DeliveryStatus.FAILED_FINAL:
            logger.error("Notification %s failed permanently: %s", instance_id, instance.failure_reason)
            await self._publish(instance)
        else:
            await self._publish(instance)
        return instance

    async def report_read(
        self, instance_id: str, at: datetime | None = None
    ) -> NotificationInstance:
        """Mark a delivered instance as read.

        Raises:
            NotificationNotFoundError: If the instance does not exist.
            InvalidTransitionError: If the instance is not in ``delivered``.
        """
        async with self._instance_locks.hold(instance_id):
            instance = await self._load(instance_id)
            expected = StoredState.of(instance)
            self.state_machine.mark_read(instance, ensure_utc(at) or self._clock())
            await self._write(instance, expected)
        await self._publish(instance)
        return instance

    async def cancel(
        self, instance_id: str, reason: str = REASON_CANCELLED
    ) -> NotificationInstance:
        """Suppress a pending or scheduled instance before its hand-off.

        Raises:
            NotificationNotFoundError: If the instance does not exist.
            InvalidTransitionError: If the instance was already handed off.
        """
        peek = await self._load(instance_id)
        bucket = BucketKey.parse(peek.digest_bucket) if peek.digest_bucket else None
        bucket_lock = self._bucket_locks.hold(bucket) if bucket else nullcontext()

        async with bucket_lock:
            async with self._instance_locks.hold(instance_id):
                instance = await self._load(instance_id)
                expected = StoredState.of(instance)
                self.state_machine.suppress(instance, reason, self._clock())
                await self._write(instance, expected)
                if bucket is not None:
                    await self.digests.remove(bucket, instance_id)

        if self._timer is not None:
            self._timer.cancel(instance_id)
        logger.info("Notification %s cancelled: %s", instance_id, reason)
        await self._publish(instance)
        return instance

    # Outbound

    async def get_instance(self, instance_id: str) -> NotificationInstance:
        """Load an instance.

        Raises:
            NotificationNotFoundError: If the instance does not exist.
        """
        return await self._load(instance_id)

    # Dispatch

    async def dispatch(
        self,
        instance_id: str,
        now: datetime | None = None,
        tolerance: timedelta = timedelta(0),
    ) -> bool:
        """Hand a due, individually scheduled instance to the transport.

        The ``scheduled -> sent`` move happens at most once per attempt;
        concurrent callers for the same instance, in this engine or another
        one on the same database, see it already claimed and back off.

        Returns:
            True if this call performed the hand-off.
        """
        async with self._instance_locks.hold(instance_id):
            instance = await self._load(instance_id)
            if instance.status is not DeliveryStatus.SCHEDULED or instance.digest_bucket:
                return False
            now = now or self._clock()
            if instance.scheduled_for is not None and instance.scheduled_for > now + tolerance:
                return False
            expected = StoredState.of(instance)
            self.state_machine.mark_sent(instance, now)
            if not await self.instances.save_if(instance, expected):
                logger.debug("Notification %s was claimed by another worker", instance_id)
                return False

        await self._publish(instance)
        await self._hand_off(DispatchEvent.single(instance))
        return True

    async def dispatch_due(self, now: datetime | None = None) -> int:
        """Dispatch every individually scheduled instance that is overdue.

        Recovers wake-ups lost to a restart; safe to run repeatedly.

        Returns:
            Number of instances handed off.
        """
        now = now or self._clock()
        due = await self.instances.list_due(now, self._dispatch_batch_size)
        dispatched = 0
        for instance in due:
            try:
                if await self.dispatch(instance.id, now):
                    dispatched += 1
            except Exception:
                logger.error("Due dispatch failed for %s", instance.id, exc_info=True)
        if dispatched:
            logger.info("Dispatched %d overdue notifications", dispatched)
        return dispatched

    async def sweep_digests(self, now: datetime | None = None) -> int:
        """Drain and dispatch every digest bucket that is due.

        Returns:
            Number of buckets dispatched.
        """
        now = now or self._clock()
        dispatched = 0
        for key in await self.digests.due(now):
            try:
                if await self._dispatch_bucket(key, now):
                    dispatched += 1
            except Exception:
                logger.error("Digest dispatch failed for bucket %s", key, exc_info=True)
        if dispatched:
            logger.info("Dispatched %d digest buckets", dispatched)
        return dispatched

    async def close(self) -> None:
        """Cancel pending wake-ups."""
        if self._timer is not None:
            await self._timer.close()

    async def wait_for_timers(self) -> None:
        """Wait for armed wake-ups to fire. Used by tests and shutdown."""
        if self._timer is not None:
            await self._timer.drain()

    # Internals

    async def _dispatch_bucket(self, key: BucketKey, now: datetime) -> bool:
        async with self._bucket_locks.hold(key):
            member_ids = await self.digests.drain(key)
            if not member_ids:
                return False

            loaded = await self.instances.get_many(member_ids)
            members = sorted(
                (
                    i
                    for i in loaded
                    if i.status is DeliveryStatus.SCHEDULED and i.digest_bucket == str(key)
                ),
                key=lambda i: i.sort_key,
            )
            if len(members) != len(member_ids):
                logger.debug(
                    "Bucket %s: %d of %d members no longer scheduled",
                    key,
                    len(member_ids) - len(members),
                    len(member_ids),
                )
            if not members:
                return False

            # Validate every member before moving any of them.
            for member in members:
                check_transition(member, DeliveryStatus.SENT)
            changes = []
            for member in members:
                expected = StoredState.of(member)
                self.state_machine.mark_sent(member, now)
                changes.append((member, expected))

            try:
                claimed = await self.instances.save_many_if(changes)
            except Exception:
                for member_id in member_ids:
                    await self.digests.add(key, member_id, now)
                raise

            members = [m for m in members if m.id in claimed]
            if not members:
                return False

        for member in members:
            await self._publish(member)
        await self._hand_off(DispatchEvent.digest(str(key), members))
        return True

    async def _hand_off(self, event: DispatchEvent) -> None:
        """Send an event and apply any immediate outcome to its instances."""
        try:
            receipt = await self.transport.send(event)
        except TransportFailure as e:
            outcome = (
                TransportOutcome.RETRYABLE_FAILURE if e.retryable else TransportOutcome.FINAL_FAILURE
            )
            detail: str | None = str(e)
        except Exception as e:
            logger.error(
                "Transport raised for %s via %s",
                ",".join(event.instance_ids),
                event.channel.value,
                exc_info=True,
            )
            outcome = TransportOutcome.RETRYABLE_FAILURE
            detail = f"transport error: {e}"
        else:
            if receipt.outcome is None:
                return
            outcome, detail = receipt.outcome, receipt.detail

        for instance in event.instances:
            try:
                await self.report_outcome(instance.id, outcome, detail)
            except InvalidTransitionError:
                # A transport callback already reported this attempt.
                logger.warning("Outcome for %s already applied", instance.id)

    async def _record_suppressed(
        self, instance: NotificationInstance, reason: str, now: datetime
    ) -> str:
        self.state_machine.suppress(instance, reason, now)
        await self.instances.add(instance)
        logger.info(
            "Notification %s for user %s suppressed: %s", instance.id, instance.user_id, reason
        )
        await self._publish(instance)
        return instance.id

    async def _enqueue_digest(
        self, instance: NotificationInstance, key: BucketKey, due_at: datetime
    ) -> None:
        try:
            await self.digests.add(key, instance.id, due_at)
        except Exception:
            async with self._instance_locks.hold(instance.id):
                expected = StoredState.of(instance)
                self.state_machine.suppress(instance, REASON_DIGEST_ENQUEUE_FAILED, self._clock())
                await self.instances.save_if(instance, expected)
            raise

    def _choose_channel(self, instance: NotificationInstance) -> Channel | None:
        for channel in instance.allowed_channels:
            if instance.recipient.address_for(channel):
                return channel
        return None

    def _arm(self, instance_id: str, at: datetime) -> None:
        if self._timer is not None:
            self._timer.schedule(instance_id, at)

    async def _on_timer(self, instance_id: str) -> None:
        await self.dispatch(instance_id, tolerance=TIMER_TOLERANCE)

    async def _write(self, instance: NotificationInstance, expected: StoredState) -> None:
        if not await self.instances.save_if(instance, expected):
            raise ConcurrentUpdateError(
                instance.id, expected.status.value, instance.status.value
            )

    async def _load(self, instance_id: str) -> NotificationInstance:
        instance = await self.instances.get(instance_id)
        if instance is None:
            raise NotificationNotFoundError(f"Notification {instance_id} not found")
        return instance

    async def _publish(self, instance: NotificationInstance, event_type: str | None = None) -> None:
        event_type = event_type or event_for_status(instance.status)
        if event_type is None:
            return
        await self._events.publish(event_type, instance.to_dict(), tenant_id=instance.tenant_id)
