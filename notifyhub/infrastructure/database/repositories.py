# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy implementations of the notification repositories.

Each repository call runs in its own session from ``session_scope`` so
failures surface as DatabaseError and leave nothing half-written.
Instance writes are single UPDATE statements guarded by the expected
status and retry count, so concurrent workers on one database cannot both
apply the same transition.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notifyhub.core.notifications.models import (
    Channel,
    DeliveryStatus,
    Frequency,
    NotificationInstance,
    NotificationPreference,
    NotificationType,
    Priority,
    Recipient,
    StatusChange,
)
from notifyhub.core.notifications.repository import (
    InstanceFilter,
    InstanceRepository,
    PreferenceKey,
    PreferenceRepository,
    StoredState,
)
from notifyhub.infrastructure.database.connection import session_scope
from notifyhub.infrastructure.database.models import (
    ANY_TEMPLATE,
    NotificationModel,
    NotificationPreferenceModel,
    TenantDefaultPreferenceModel,
)
from notifyhub.utils.datetime import ensure_utc, parse_iso

logger = logging.getLogger(__name__)


def _preference_from_model(
    model: NotificationPreferenceModel | TenantDefaultPreferenceModel,
) -> NotificationPreference:
    template_type = getattr(model, "template_type", ANY_TEMPLATE)
    return NotificationPreference(
        user_id=getattr(model, "user_id", None),
        notification_type=NotificationType(model.notification_type),
        template_type=template_type or None,
        tenant_id=model.tenant_id,
        is_enabled=model.is_enabled,
        delivery_channels=frozenset(Channel(c) for c in model.delivery_channels),
        quiet_hours_start=model.quiet_hours_start,
        quiet_hours_end=model.quiet_hours_end,
        timezone=model.timezone,
        frequency=Frequency(model.frequency),
        metadata=dict(model.extra_data or {}),
        created_at=ensure_utc(model.created_at),
        updated_at=ensure_utc(model.updated_at),
    )


def _preference_values(preference: NotificationPreference) -> dict[str, Any]:
    values: dict[str, Any] = {
        "tenant_id": preference.tenant_id,
        "is_enabled": preference.is_enabled,
        "delivery_channels": sorted(c.value for c in preference.delivery_channels),
        "quiet_hours_start": preference.quiet_hours_start,
        "quiet_hours_end": preference.quiet_hours_end,
        "timezone": preference.timezone,
        "frequency": preference.frequency.value,
        "extra_data": dict(preference.metadata),
    }
    if preference.created_at is not None:
        values["created_at"] = preference.created_at
    if preference.updated_at is not None:
        values["updated_at"] = preference.updated_at
    return values


def _instance_values(instance: NotificationInstance) -> dict[str, Any]:
    return {
        "id": instance.id,
        "tenant_id": instance.tenant_id,
        "user_id": instance.user_id,
        "notification_type": instance.notification_type.value,
        "priority": instance.priority.value,
        "status": instance.status.value,
        "subject": instance.subject,
        "content": instance.content,
        "recipient": instance.recipient.to_dict(),
        "template_type": instance.template_type,
        "template_ref": instance.template_ref,
        "requested_channels": [c.value for c in instance.requested_channels],
        "allowed_channels": [c.value for c in instance.allowed_channels],
        "channel": instance.channel.value if instance.channel else None,
        "scheduled_for": instance.scheduled_for,
        "scheduled_at": instance.scheduled_at,
        "sent_at": instance.sent_at,
        "delivered_at": instance.delivered_at,
        "read_at": instance.read_at,
        "last_attempt_at": instance.last_attempt_at,
        "failure_reason": instance.failure_reason,
        "retry_count": instance.retry_count,
        "timezone": instance.timezone,
        "digest_bucket": instance.digest_bucket,
        "extra_data": dict(instance.metadata),
        "status_log": [change.to_dict() for change in instance.status_log],
        "created_at": instance.created_at,
    }


def _instance_from_model(model: NotificationModel) -> NotificationInstance:
    return NotificationInstance(
        id=model.id,
        tenant_id=model.tenant_id,
        user_id=model.user_id,
        notification_type=NotificationType(model.notification_type),
        content=model.content,
        recipient=Recipient.from_dict(model.recipient),
        created_at=ensure_utc(model.created_at),
        priority=Priority(model.priority),
        status=DeliveryStatus(model.status),
        subject=model.subject,
        template_type=model.template_type,
        template_ref=model.template_ref,
        requested_channels=[Channel(c) for c in model.requested_channels],
        allowed_channels=[Channel(c) for c in model.allowed_channels],
        channel=Channel(model.channel) if model.channel else None,
        scheduled_for=ensure_utc(model.scheduled_for),
        scheduled_at=ensure_utc(model.scheduled_at),
        sent_at=ensure_utc(model.sent_at),
        delivered_at=ensure_utc(model.delivered_at),
        read_at=ensure_utc(model.read_at),
        last_attempt_at=ensure_utc(model.last_attempt_at),
        failure_reason=model.failure_reason,
        retry_count=model.retry_count,
        timezone=model.timezone,
        digest_bucket=model.digest_bucket,
        metadata=dict(model.extra_data or {}),
        status_log=[
            StatusChange(
                from_status=DeliveryStatus(entry["from"]),
                to_status=DeliveryStatus(entry["to"]),
                at=parse_iso(entry["at"]),
                reason=entry.get("reason"),
            )
            for entry in model.status_log or []
        ],
    )


class SqlAlchemyPreferenceRepository(PreferenceRepository):
    """Preference repository backed by the notification_preferences tables."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    @staticmethod
    def _key_filter(key: PreferenceKey) -> tuple[Any, ...]:
        user_id, notification_type, template_type = key
        return (
            NotificationPreferenceModel.user_id == user_id,
            NotificationPreferenceModel.notification_type == notification_type.value,
            NotificationPreferenceModel.template_type == (template_type or ANY_TEMPLATE),
        )

    async def get(self, key: PreferenceKey) -> NotificationPreference | None:
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                select(NotificationPreferenceModel).where(*self._key_filter(key))
            )
            model = result.scalar_one_or_none()
            return _preference_from_model(model) if model else None

    async def put(self, preference: NotificationPreference) -> NotificationPreference:
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                select(NotificationPreferenceModel).where(*self._key_filter(preference.key))
            )
            model = result.scalar_one_or_none()
            values = _preference_values(preference)
            if model is None:
                model = NotificationPreferenceModel(
                    user_id=preference.user_id,
                    notification_type=preference.notification_type.value,
                    template_type=preference.template_type or ANY_TEMPLATE,
                    **values,
                )
                session.add(model)
            else:
                for name, value in values.items():
                    setattr(model, name, value)
        return preference

    async def delete(self, key: PreferenceKey) -> bool:
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                delete(NotificationPreferenceModel).where(*self._key_filter(key))
            )
            return result.rowcount > 0

    async def list_for_user(
        self, user_id: str, notification_type: NotificationType | None = None
    ) -> list[NotificationPreference]:
        query = select(NotificationPreferenceModel).where(
            NotificationPreferenceModel.user_id == user_id
        )
        if notification_type is not None:
            query = query.where(
                NotificationPreferenceModel.notification_type == notification_type.value
            )
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(query)
            return [_preference_from_model(m) for m in result.scalars().all()]

    async def list_for_tenant(self, tenant_id: str) -> list[NotificationPreference]:
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                select(NotificationPreferenceModel).where(
                    NotificationPreferenceModel.tenant_id == tenant_id
                )
            )
            return [_preference_from_model(m) for m in result.scalars().all()]

    async def get_tenant_default(
        self, tenant_id: str, notification_type: NotificationType
    ) -> NotificationPreference | None:
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                select(TenantDefaultPreferenceModel).where(
                    TenantDefaultPreferenceModel.tenant_id == tenant_id,
                    TenantDefaultPreferenceModel.notification_type == notification_type.value,
                )
            )
            model = result.scalar_one_or_none()
            return _preference_from_model(model) if model else None

    async def put_tenant_default(
        self, tenant_id: str, preference: NotificationPreference
    ) -> NotificationPreference:
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                select(TenantDefaultPreferenceModel).where(
                    TenantDefaultPreferenceModel.tenant_id == tenant_id,
                    TenantDefaultPreferenceModel.notification_type
                    == preference.notification_type.value,
                )
            )
            model = result.scalar_one_or_none()
            values = _preference_values(preference)
            values["tenant_id"] = tenant_id
            if model is None:
                session.add(
                    TenantDefaultPreferenceModel(
                        notification_type=preference.notification_type.value, **values
                    )
                )
            else:
                for name, value in values.items():
                    setattr(model, name, value)
        return preference


class SqlAlchemyInstanceRepository(InstanceRepository):
    """Instance repository backed by the notifications table."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def add(self, instance: NotificationInstance) -> None:
        async with session_scope(self._sessionmaker) as session:
            session.add(NotificationModel(**_instance_values(instance)))

    @staticmethod
    def _guarded_update(instance: NotificationInstance, expected: StoredState) -> Any:
        values = _instance_values(instance)
        del values["id"]
        return (
            update(NotificationModel)
            .where(
                NotificationModel.id == instance.id,
                NotificationModel.status == expected.status.value,
                NotificationModel.retry_count == expected.retry_count,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def save_if(self, instance: NotificationInstance, expected: StoredState) -> bool:
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(self._guarded_update(instance, expected))
            written = result.rowcount == 1
        if not written:
            logger.debug(
                "Notification %s no longer %s, write skipped", instance.id, expected.status.value
            )
        return written

    async def save_many_if(
        self, changes: list[tuple[NotificationInstance, StoredState]]
    ) -> set[str]:
        written: set[str] = set()
        async with session_scope(self._sessionmaker) as session:
            for instance, expected in changes:
                result = await session.execute(self._guarded_update(instance, expected))
                if result.rowcount == 1:
                    written.add(instance.id)
        return written

    async def get(self, instance_id: str) -> NotificationInstance | None:
        async with session_scope(self._sessionmaker) as session:
            model = await session.get(NotificationModel, instance_id)
            return _instance_from_model(model) if model else None

    async def get_many(self, instance_ids: list[str]) -> list[NotificationInstance]:
        if not instance_ids:
            return []
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                select(NotificationModel).where(NotificationModel.id.in_(instance_ids))
            )
            return [_instance_from_model(m) for m in result.scalars().all()]

    @staticmethod
    def _conditions(filters: InstanceFilter) -> list[Any]:
        conditions: list[Any] = []
        if filters.tenant_id is not None:
            conditions.append(NotificationModel.tenant_id == filters.tenant_id)
        if filters.user_id is not None:
            conditions.append(NotificationModel.user_id == filters.user_id)
        if filters.notification_type is not None:
            conditions.append(
                NotificationModel.notification_type == filters.notification_type.value
            )
        if filters.status is not None:
            conditions.append(NotificationModel.status == filters.status.value)
        if filters.priority is not None:
            conditions.append(NotificationModel.priority == filters.priority.value)
        if filters.created_from is not None:
            conditions.append(NotificationModel.created_at >= filters.created_from)
        if filters.created_to is not None:
            conditions.append(NotificationModel.created_at <= filters.created_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    NotificationModel.subject.ilike(pattern),
                    NotificationModel.content.ilike(pattern),
                )
            )
        return conditions

    async def find(
        self,
        filters: InstanceFilter,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[NotificationInstance], int]:
        conditions = self._conditions(filters)
        query = (
            select(NotificationModel)
            .where(*conditions)
            .order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        count_query = select(func.count()).select_from(NotificationModel).where(*conditions)

        async with session_scope(self._sessionmaker) as session:
            total = (await session.execute(count_query)).scalar_one()
            result = await session.execute(query)
            return [_instance_from_model(m) for m in result.scalars().all()], total

    async def list_due(self, now: datetime, limit: int) -> list[NotificationInstance]:
        query = (
            select(NotificationModel)
            .where(
                NotificationModel.status == DeliveryStatus.SCHEDULED.value,
                NotificationModel.digest_bucket.is_(None),
                NotificationModel.scheduled_for <= now,
            )
            .order_by(NotificationModel.scheduled_for, NotificationModel.id)
            .limit(limit)
        )
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(query)
            return [_instance_from_model(m) for m in result.scalars().all()]
