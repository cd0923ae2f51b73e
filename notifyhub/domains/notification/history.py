# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification history queries.

Read-side views over delivery records: paginated listings, unread counts,
statistics over a date range and marking several notifications as read.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from notifyhub.core.config.settings import NotificationSettings
from notifyhub.core.notifications import (
    DeliveryStatus,
    InstanceFilter,
    NotificationEngine,
    NotificationError,
    NotificationInstance,
)
from notifyhub.domains.notification.schemas import (
    NotificationHistoryQuery,
    NotificationListResponse,
    NotificationResponse,
)
from notifyhub.utils.datetime import Clock, days_ago, utc_now

logger = logging.getLogger(__name__)

UNREAD_STATUSES = (DeliveryStatus.SENT, DeliveryStatus.DELIVERED)


@dataclass
class DailyActivity:
    """Counts for one UTC day of the statistics range."""

    day: date
    created: int = 0
    sent: int = 0
    delivered: int = 0
    read: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "created": self.created,
            "sent": self.sent,
            "delivered": self.delivered,
            "read": self.read,
            "failed": self.failed,
        }


@dataclass
class NotificationStats:
    """Aggregate delivery statistics.

    Attributes:
        delivery_rate: Percentage of handed-off notifications that were delivered.
        read_rate: Percentage of delivered notifications that were read.
    """

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)
    delivery_rate: float = 0.0
    read_rate: float = 0.0
    daily: list[DailyActivity] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_type": dict(self.by_type),
            "by_priority": dict(self.by_priority),
            "delivery_rate": self.delivery_rate,
            "read_rate": self.read_rate,
            "daily": [d.to_dict() for d in self.daily],
        }


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def to_response(instance: NotificationInstance) -> NotificationResponse:
    return NotificationResponse.model_validate(instance.to_dict())


class NotificationHistoryService:
    """Query layer over recorded notification instances.

    Attributes:
        engine: Engine whose instance repository is queried; reads go
            through it so state changes stay in the state machine.
    """

    def __init__(
        self,
        engine: NotificationEngine,
        settings: NotificationSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.engine = engine
        self._settings = settings or NotificationSettings()
        self._clock = clock

    async def list_instances(
        self, tenant_id: str, query: NotificationHistoryQuery
    ) -> NotificationListResponse:
        """Return one page of a tenant's notifications, newest first.

        A limit above the configured maximum is capped to it.
        """
        limit = min(
            query.limit or self._settings.history_default_page_size,
            self._settings.history_max_page_size,
        )
        filters = InstanceFilter(
            tenant_id=tenant_id,
            user_id=query.user_id,
            notification_type=query.notification_type,
            status=query.status,
            priority=query.priority,
            created_from=query.created_from,
            created_to=query.created_to,
            search=query.search,
        )
        items, total = await self.engine.instances.find(
            filters, offset=(query.page - 1) * limit, limit=limit
        )
        pages = (total + limit - 1) // limit if total > 0 else 0
        return NotificationListResponse(
            items=[to_response(i) for i in items],
            total=total,
            page=query.page,
            limit=limit,
            pages=pages,
        )

    async def unread_count(self, tenant_id: str, user_id: str) -> int:
        """Notifications handed to the user that they have not read yet."""
        count = 0
        for status in UNREAD_STATUSES:
            _, total = await self.engine.instances.find(
                InstanceFilter(tenant_id=tenant_id, user_id=user_id, status=status),
                limit=0,
            )
            count += total
        return count

    async def mark_multiple_read(
        self,
        user_id: str,
        instance_ids: list[str],
        at: datetime | None = None,
    ) -> int:
        """Mark the user's delivered notifications as read.

        IDs that are unknown, belong to another user or are not in
        ``delivered`` are skipped.

        Returns:
            Number of notifications marked read.
        """
        marked = 0
        for instance_id in dict.fromkeys(instance_ids):
            instance = await self.engine.instances.get(instance_id)
            if instance is None or instance.user_id != user_id:
                continue
            if instance.status is not DeliveryStatus.DELIVERED:
                continue
            try:
                await self.engine.report_read(instance_id, at)
            except NotificationError as e:
                logger.warning("Could not mark %s read: %s", instance_id, e)
                continue
            marked += 1

        logger.info("Marked %d of %d notifications read for user %s", marked, len(instance_ids), user_id)
        return marked

    async def get_stats(
        self,
        tenant_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        user_id: str | None = None,
    ) -> NotificationStats:
        """Statistics over notifications created in a date range.

        Args:
            tenant_id: Tenant to report on.
            date_from: Range start; defaults to 30 days before now.
            date_to: Range end; defaults to now.
            user_id: Restrict to one recipient.
        """
        date_to = date_to or self._clock()
        date_from = date_from or days_ago(30, now=date_to)
        items, total = await self.engine.instances.find(
            InstanceFilter(
                tenant_id=tenant_id,
                user_id=user_id,
                created_from=date_from,
                created_to=date_to,
            )
        )

        by_status = Counter(i.status.value for i in items)
        by_type = Counter(i.notification_type.value for i in items)
        by_priority = Counter(i.priority.value for i in items)

        handed_off = sum(1 for i in items if i.sent_at is not None)
        delivered = sum(1 for i in items if i.delivered_at is not None)
        read = sum(1 for i in items if i.read_at is not None)

        days: dict[date, DailyActivity] = {}
        for instance in items:
            day = instance.created_at.date()
            activity = days.setdefault(day, DailyActivity(day=day))
            activity.created += 1
            if instance.sent_at is not None:
                activity.sent += 1
            if instance.delivered_at is not None:
                activity.delivered += 1
            if instance.read_at is not None:
                activity.read += 1
            if instance.status is DeliveryStatus.FAILED_FINAL:
                activity.failed += 1

        return NotificationStats(
            total=total,
            by_status=dict(by_status),
            by_type=dict(by_type),
            by_priority=dict(by_priority),
            delivery_rate=_rate(delivered, handed_off),
            read_rate=_rate(read, delivered),
            daily=[days[d] for d in sorted(days)],
        )
