# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery state machine.

Every status change of a notification instance goes through
``DeliveryStateMachine``. Legal moves are listed in ``TRANSITIONS``;
anything else raises InvalidTransitionError and leaves the instance
untouched.

Timestamps are monotonic: scheduled_at <= sent_at <= delivered_at <= read_at.
A caller-supplied instant earlier than the previous milestone is clamped
up to it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from notifyhub.core.notifications.exceptions import InvalidTransitionError
from notifyhub.core.notifications.models import (
    DeliveryStatus,
    NotificationInstance,
    StatusChange,
    TransportOutcome,
)

S = DeliveryStatus

TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    S.PENDING: frozenset({S.SUPPRESSED, S.SCHEDULED}),
    S.SCHEDULED: frozenset({S.SUPPRESSED, S.SENT}),
    S.SENT: frozenset({S.DELIVERED, S.FAILED_RETRYING, S.FAILED_FINAL}),
    S.FAILED_RETRYING: frozenset({S.SCHEDULED}),
    S.DELIVERED: frozenset({S.READ}),
    S.READ: frozenset(),
    S.FAILED_FINAL: frozenset(),
    S.SUPPRESSED: frozenset(),
}


def can_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(instance: NotificationInstance, target: DeliveryStatus) -> None:
    """Raise InvalidTransitionError unless ``instance`` may move to ``target``."""
    if not can_transition(instance.status, target):
        raise InvalidTransitionError(instance.status.value, target.value, instance.id)


def _apply(
    instance: NotificationInstance,
    target: DeliveryStatus,
    at: datetime,
    reason: str | None = None,
) -> None:
    check_transition(instance, target)
    instance.status_log.append(
        StatusChange(from_status=instance.status, to_status=target, at=at, reason=reason)
    )
    instance.status = target


def _not_before(at: datetime, floor: datetime | None) -> datetime:
    if floor is not None and at < floor:
        return floor
    return at


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for retryable transport failures.

    Attributes:
        max_retries: Retries allowed before a failure becomes final.
        base_delay: Delay before the first retry.
        max_delay: Cap for any single delay.
    """

    max_retries: int = 5
    base_delay: timedelta = timedelta(seconds=2)
    max_delay: timedelta = timedelta(hours=1)

    def delay_for(self, retry_count: int) -> timedelta:
        """Delay before retry number ``retry_count`` (1-based)."""
        exponent = max(retry_count - 1, 0)
        # Cap the exponent before multiplying so large counts cannot overflow.
        if exponent >= 63:
            return self.max_delay
        return min(self.base_delay * (2**exponent), self.max_delay)


@dataclass(frozen=True)
class FailureResult:
    """What recording a failure did to an instance."""

    final: bool
    retry_at: datetime | None = None
    reason: str | None = None


class DeliveryStateMachine:
    """Applies lifecycle transitions to notification instances.

    Attributes:
        retry_policy: Backoff and cap used by record_failure().
    """

    def __init__(self, retry_policy: RetryPolicy | None = None) -> None:
        self.retry_policy = retry_policy or RetryPolicy()

    def suppress(self, instance: NotificationInstance, reason: str, at: datetime) -> None:
        """pending|scheduled -> suppressed."""
        _apply(instance, S.SUPPRESSED, at, reason)
        instance.failure_reason = reason

    def schedule(self, instance: NotificationInstance, dispatch_at: datetime, at: datetime) -> None:
        """pending|failed_retrying -> scheduled, due at ``dispatch_at``.

        Clears ``failure_reason``; earlier failures stay in ``status_log``.
        """
        _apply(instance, S.SCHEDULED, at)
        instance.failure_reason = None
        instance.scheduled_at = _not_before(at, instance.last_attempt_at)
        instance.scheduled_for = dispatch_at

    def mark_sent(self, instance: NotificationInstance, at: datetime) -> None:
        """scheduled -> sent. ``sent_at`` records the first hand-off only."""
        _apply(instance, S.SENT, at)
        attempt_at = _not_before(at, instance.scheduled_at)
        instance.last_attempt_at = attempt_at
        if instance.sent_at is None:
            instance.sent_at = attempt_at

    def mark_delivered(self, instance: NotificationInstance, at: datetime) -> None:
        """sent -> delivered."""
        _apply(instance, S.DELIVERED, at)
        instance.delivered_at = _not_before(at, instance.last_attempt_at)
        instance.failure_reason = None

    def mark_read(self, instance: NotificationInstance, at: datetime) -> None:
        """delivered -> read."""
        _apply(instance, S.READ, at)
        instance.read_at = _not_before(at, instance.delivered_at)

    def record_failure(
        self,
        instance: NotificationInstance,
        outcome: TransportOutcome,
        detail: str | None,
        at: datetime,
    ) -> FailureResult:
        """Apply a failed hand-off.

        A retryable failure below the retry cap moves the instance through
        failed_retrying back to scheduled with a backoff delay and bumps
        retry_count; the reason is then only kept in the status log. A
        retryable failure at the cap, or a final failure, ends in
        failed_final.

        Raises:
            InvalidTransitionError: If the instance is not in ``sent``.
            ValueError: If ``outcome`` is not a failure.
        """
        if outcome is TransportOutcome.DELIVERED:
            raise ValueError("record_failure() needs a failure outcome")
        reason = detail or outcome.value

        if (
            outcome is TransportOutcome.FINAL_FAILURE
            or instance.retry_count >= self.retry_policy.max_retries
        ):
            if outcome is TransportOutcome.RETRYABLE_FAILURE:
                reason = f"retry limit reached ({instance.retry_count}): {reason}"
            _apply(instance, S.FAILED_FINAL, at, reason)
            instance.failure_reason = reason
            return FailureResult(final=True, reason=reason)

        _apply(instance, S.FAILED_RETRYING, at, reason)
        instance.retry_count += 1
        retry_at = at + self.retry_policy.delay_for(instance.retry_count)
        # Retries go out individually, outside any digest bucket.
        instance.digest_bucket = None
        self.schedule(instance, retry_at, at)
        return FailureResult(final=False, retry_at=retry_at, reason=reason)
