# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification and preference services.

This module provides the application-facing services:
- NotificationService: sending, outcomes, reads, cancellation and history
- PreferenceService: per-user preferences and tenant defaults

Both take validated schemas, call the notification engine and return
response schemas. build_notification_service() wires the engine to the
configured storage, digest and transport backends.

Example:
    service = await init_notification_service(get_settings())
    instance_id = await service.send(SendNotificationRequest(...))
"""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from notifyhub.core.config.settings import Settings
from notifyhub.core.notifications import (
    BulkSubmitResult,
    Channel,
    DeliveryStateMachine,
    DigestBucketStore,
    InMemoryDigestBucketStore,
    InMemoryInstanceRepository,
    InMemoryPreferenceRepository,
    InstanceRepository,
    NotificationEngine,
    NotificationNotFoundError,
    NotificationType,
    PreferenceRepository,
    PreferenceStore,
    RetryPolicy,
    Transport,
    TransportOutcome,
)
from notifyhub.domains.notification.history import (
    NotificationHistoryService,
    NotificationStats,
    to_response,
)
from notifyhub.domains.notification.schemas import (
    BulkPreferenceResult,
    BulkPreferenceUpdateRequest,
    BulkSendRequest,
    NotificationHistoryQuery,
    NotificationListResponse,
    NotificationResponse,
    PreferenceResponse,
    PreferenceUpdateRequest,
    SendNotificationRequest,
)
from notifyhub.infrastructure.events import EventBus
from notifyhub.infrastructure.notifications import ChannelTransport, InAppChannel, LogChannel
from notifyhub.utils.datetime import Clock, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notifyhub.infrastructure.cache import RedisClient

logger = logging.getLogger(__name__)

# Module-level state
_notification_service: "NotificationService | None" = None


class PreferenceService:
    """Service for user notification preferences and tenant defaults.

    Attributes:
        store: Preference store the engine resolves against.
    """

    def __init__(self, store: PreferenceStore) -> None:
        self.store = store

    async def get_preferences(
        self, user_id: str, notification_type: NotificationType | None = None
    ) -> list[PreferenceResponse]:
        """List a user's explicit preference records."""
        preferences = await self.store.list_for_user(user_id, notification_type)
        return [PreferenceResponse.from_preference(p) for p in preferences]

    async def get_preference(
        self,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None = None,
    ) -> PreferenceResponse:
        """Get one explicit record.

        Raises:
            PreferenceNotFoundError: If the user has no such record.
        """
        preference = await self.store.get(user_id, notification_type, template_type)
        return PreferenceResponse.from_preference(preference)

    async def get_effective_preference(
        self,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None = None,
        tenant_id: str | None = None,
    ) -> dict[str, Any]:
        """The preference that would apply to a request, and its source."""
        effective = await self.store.resolve(user_id, notification_type, template_type, tenant_id)
        return {
            "source": effective.source.value,
            "preference": PreferenceResponse.from_preference(effective.preference).model_dump(mode="json"),
        }

    async def update_preference(
        self,
        user_id: str,
        request: PreferenceUpdateRequest,
        tenant_id: str | None = None,
    ) -> PreferenceResponse:
        """Create or replace one record.

        Raises:
            InvalidChannelError: If a channel is not valid for the type.
            InvalidPreferenceError: If the record is malformed.
        """
        stored = await self.store.upsert(request.to_preference(user_id, tenant_id))
        return PreferenceResponse.from_preference(stored)

    async def bulk_update_preferences(
        self,
        user_id: str,
        request: BulkPreferenceUpdateRequest,
        tenant_id: str | None = None,
    ) -> list[BulkPreferenceResult]:
        """Apply several records; each succeeds or fails on its own."""
        results = await self.store.bulk_upsert(
            [p.to_preference(user_id, tenant_id) for p in request.preferences]
        )
        return [
            BulkPreferenceResult(
                notification_type=r.notification_type,
                template_type=r.template_type,
                success=r.success,
                error=r.error,
            )
            for r in results
        ]

    async def delete_preference(
        self,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None = None,
    ) -> None:
        await self.store.delete(user_id, notification_type, template_type)

    async def reset_to_defaults(self, user_id: str) -> int:
        return await self.store.reset_to_defaults(user_id)

    async def set_tenant_default(
        self, tenant_id: str, request: PreferenceUpdateRequest
    ) -> PreferenceResponse:
        stored = await self.store.set_tenant_default(
            tenant_id, request.to_preference(None, tenant_id)
        )
        return PreferenceResponse.from_preference(stored)

    async def get_summary(self, tenant_id: str) -> dict[str, Any]:
        return (await self.store.summary(tenant_id)).to_dict()


class NotificationService:
    """Service for sending notifications and querying their history.

    Attributes:
        engine: The notification engine.
        history: History query service.
        preferences: Preference service sharing the engine's store.
    """

    def __init__(
        self,
        engine: NotificationEngine,
        history: NotificationHistoryService | None = None,
    ) -> None:
        self.engine = engine
        self.history = history or NotificationHistoryService(engine)
        self.preferences = PreferenceService(engine.preferences)

    async def send(self, request: SendNotificationRequest) -> str:
        """Submit one notification.

        Returns:
            ID of the recorded instance, suppressed or not.
        """
        return await self.engine.submit(request.to_request())

    async def send_bulk(self, request: BulkSendRequest) -> BulkSubmitResult:
        """Submit one notification to every listed recipient."""
        return await self.engine.submit_bulk(request.to_requests())

    async def report_outcome(
        self,
        instance_id: str,
        outcome: TransportOutcome,
        detail: str | None = None,
        at: datetime | None = None,
    ) -> NotificationResponse:
        return to_response(await self.engine.report_outcome(instance_id, outcome, detail, at))

    async def mark_read(self, instance_id: str, at: datetime | None = None) -> NotificationResponse:
        return to_response(await self.engine.report_read(instance_id, at))

    async def cancel(self, instance_id: str, reason: str = "cancelled") -> NotificationResponse:
        return to_response(await self.engine.cancel(instance_id, reason))

    async def get_notification(
        self, instance_id: str, tenant_id: str | None = None
    ) -> NotificationResponse:
        """Get one notification.

        Raises:
            NotificationNotFoundError: If it does not exist or belongs to
                another tenant.
        """
        instance = await self.engine.get_instance(instance_id)
        if tenant_id is not None and instance.tenant_id != tenant_id:
            raise NotificationNotFoundError(f"Notification {instance_id} not found")
        return to_response(instance)

    async def list_notifications(
        self, tenant_id: str, query: NotificationHistoryQuery
    ) -> NotificationListResponse:
        return await self.history.list_instances(tenant_id, query)

    async def get_unread_count(self, tenant_id: str, user_id: str) -> int:
        return await self.history.unread_count(tenant_id, user_id)

    async def mark_multiple_read(
        self, user_id: str, instance_ids: list[str], at: datetime | None = None
    ) -> int:
        return await self.history.mark_multiple_read(user_id, instance_ids, at)

    async def get_stats(
        self,
        tenant_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        user_id: str | None = None,
    ) -> NotificationStats:
        return await self.history.get_stats(tenant_id, date_from, date_to, user_id)

    async def dispatch_due(self) -> int:
        return await self.engine.dispatch_due()

    async def sweep_digests(self) -> int:
        return await self.engine.sweep_digests()

    async def close(self) -> None:
        await self.engine.close()


def default_transport() -> ChannelTransport:
    """In-app inbox plus logging stand-ins for the external channels."""
    channels = [InAppChannel()]
    channels.extend(
        LogChannel(c) for c in (Channel.EMAIL, Channel.SMS, Channel.PUSH, Channel.WEBSOCKET)
    )
    return ChannelTransport(channels)


async def _build_repositories(
    settings: Settings, sessionmaker: "async_sessionmaker[AsyncSession] | None"
) -> tuple[PreferenceRepository, InstanceRepository]:
    if settings.notifications.storage_backend == "memory":
        return InMemoryPreferenceRepository(), InMemoryInstanceRepository()

    from notifyhub.infrastructure.database import (
        SqlAlchemyInstanceRepository,
        SqlAlchemyPreferenceRepository,
        get_sessionmaker,
        init_database,
        is_database_initialized,
    )

    if sessionmaker is None:
        if not is_database_initialized():
            await init_database(settings)
        sessionmaker = get_sessionmaker()
    return SqlAlchemyPreferenceRepository(sessionmaker), SqlAlchemyInstanceRepository(sessionmaker)


async def _build_digest_store(
    settings: Settings, redis_client: "RedisClient | None"
) -> DigestBucketStore:
    if settings.notifications.digest_backend == "memory":
        return InMemoryDigestBucketStore()

    from notifyhub.infrastructure.cache import (
        RedisDigestBucketStore,
        get_redis,
        init_redis,
        is_redis_initialized,
    )

    if redis_client is None:
        if not is_redis_initialized():
            await init_redis(settings)
        redis_client = get_redis()
    return RedisDigestBucketStore(redis_client)


async def build_notification_service(
    settings: Settings,
    *,
    transport: Transport | None = None,
    event_bus: EventBus | None = None,
    clock: Clock = utc_now,
    use_timers: bool = True,
    sessionmaker: "async_sessionmaker[AsyncSession] | None" = None,
    redis_client: "RedisClient | None" = None,
) -> NotificationService:
    """Wire a notification service to the configured backends.

    Args:
        settings: Application settings.
        transport: Transport for dispatch events; in-app plus logging
            channels when omitted.
        event_bus: Bus for lifecycle events; the process bus when omitted.
        clock: Source of the current instant.
        use_timers: Arm in-process wake-ups for deferred dispatches.
            Workers that only run sweeps pass False.
        sessionmaker: Sessionmaker for the database backend; the shared
            pool when omitted.
        redis_client: Client for the Redis digest backend; the shared
            client when omitted.
    """
    config = settings.notifications
    preference_repo, instance_repo = await _build_repositories(settings, sessionmaker)
    digests = await _build_digest_store(settings, redis_client)

    engine = NotificationEngine(
        PreferenceStore(preference_repo, clock=clock),
        instance_repo,
        transport or default_transport(),
        digests,
        state_machine=DeliveryStateMachine(
            RetryPolicy(
                max_retries=config.max_retries,
                base_delay=timedelta(seconds=config.retry_base_delay_seconds),
                max_delay=timedelta(seconds=config.retry_max_delay_seconds),
            )
        ),
        event_bus=event_bus,
        clock=clock,
        default_timezone=config.default_timezone,
        use_timers=use_timers,
        dispatch_batch_size=config.dispatch_sweep_batch_size,
    )
    logger.info(
        "Notification service built (storage=%s, digests=%s)",
        config.storage_backend,
        config.digest_backend,
    )
    return NotificationService(engine, NotificationHistoryService(engine, config, clock))


# ========== Module-level functions ==========


async def init_notification_service(settings: Settings, **kwargs: Any) -> NotificationService:
    """Build and install the process-wide notification service."""
    global _notification_service

    _notification_service = await build_notification_service(settings, **kwargs)
    return _notification_service


def get_notification_service() -> NotificationService:
    """Get the process-wide notification service.

    Raises:
        RuntimeError: If the service has not been initialized.
    """
    if _notification_service is None:
        raise RuntimeError(
            "Notification service not initialized. Call init_notification_service() first."
        )
    return _notification_service


async def close_notification_service() -> None:
    global _notification_service

    if _notification_service is not None:
        await _notification_service.close()
        _notification_service = None
