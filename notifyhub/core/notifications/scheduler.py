# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dispatch timing: immediate, deferred past quiet hours, or digested.

Digest periods are computed in the recipient's zone. A daily bucket is
due at the next local midnight, a weekly bucket at the next local Monday
00:00. When a bucket's due instant itself falls in quiet hours it moves to
the end of that window.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from notifyhub.core.notifications.models import (
    EligibilityDecision,
    Frequency,
    NotificationInstance,
    NotificationType,
    Priority,
)
from notifyhub.core.notifications.quiet_hours import QuietHours
from notifyhub.utils.datetime import at_local


@dataclass(frozen=True)
class BucketKey:
    """Identity of a digest bucket: (user, type, period)."""

    user_id: str
    notification_type: NotificationType
    period: str

    def __str__(self) -> str:
        return f"{self.user_id}|{self.notification_type.value}|{self.period}"

    @classmethod
    def parse(cls, value: str) -> "BucketKey":
        user_id, notification_type, period = value.rsplit("|", 2)
        return cls(user_id, NotificationType(notification_type), period)


@dataclass(frozen=True)
class DispatchPlan:
    """When an instance goes out, and which bucket holds it if digested."""

    dispatch_at: datetime
    bucket: BucketKey | None = None


def digest_period(
    frequency: Frequency, moment: datetime, zone: ZoneInfo
) -> tuple[str, datetime]:
    """Return the period label and the UTC instant the period ends.

    Raises:
        ValueError: For a non-digest frequency.
    """
    local_day = moment.astimezone(zone).date()
    if frequency is Frequency.DAILY_DIGEST:
        return local_day.isoformat(), at_local(local_day + timedelta(days=1), time.min, zone)
    if frequency is Frequency.WEEKLY_DIGEST:
        iso_year, iso_week, _ = local_day.isocalendar()
        monday = local_day - timedelta(days=local_day.weekday())
        next_monday = monday + timedelta(days=7)
        return f"{iso_year}-W{iso_week:02d}", at_local(next_monday, time.min, zone)
    raise ValueError(f"{frequency.value} is not a digest frequency")


class DispatchScheduler:
    """Computes dispatch plans for eligible instances."""

    def schedule(
        self,
        decision: EligibilityDecision,
        instance: NotificationInstance,
        now: datetime,
    ) -> DispatchPlan:
        """Plan dispatch for an instance that passed eligibility.

        Args:
            decision: Eligibility decision with should_send=True.
            instance: The pending instance.
            now: Current instant.

        Returns:
            The plan. ``bucket`` is set only for digest frequencies.
        """
        if not decision.should_send:
            raise ValueError("Cannot schedule a suppressed notification")

        earliest = now
        if instance.scheduled_for is not None and instance.scheduled_for > now:
            earliest = instance.scheduled_for

        preference = decision.preference
        zone = ZoneInfo(decision.zone_name)
        window = QuietHours.from_strings(preference.quiet_hours_start, preference.quiet_hours_end)
        urgent = instance.priority is Priority.URGENT

        if preference.frequency.is_digest and not urgent:
            period, due = digest_period(preference.frequency, earliest, zone)
            if window is not None and window.contains_instant(due, zone):
                due = window.next_end(due, zone)
            key = BucketKey(instance.user_id, instance.notification_type, period)
            return DispatchPlan(dispatch_at=due, bucket=key)

        if decision.deferred and window is not None:
            return DispatchPlan(dispatch_at=window.next_end(earliest, zone))

        return DispatchPlan(dispatch_at=earliest)
