# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the notification and preference services and schemas."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from notifyhub.core.config.settings import Settings
from notifyhub.core.notifications import (
    Channel,
    DeliveryStatus,
    Frequency,
    InvalidChannelError,
    NotificationNotFoundError,
    NotificationType,
    PreferenceNotFoundError,
    Priority,
    TransportOutcome,
)
from notifyhub.domains.notification import (
    BulkPreferenceUpdateRequest,
    BulkSendRequest,
    NotificationHistoryQuery,
    NotificationService,
    PreferenceUpdateRequest,
    RecipientSchema,
    SendNotificationRequest,
    build_notification_service,
    close_notification_service,
    get_notification_service,
    init_notification_service,
)
from notifyhub.infrastructure.events import EventBus


@pytest.fixture
def service(engine) -> NotificationService:
    return NotificationService(engine)


@pytest.fixture
def send_request(sample_tenant_id, sample_user_id) -> SendNotificationRequest:
    return SendNotificationRequest(
        tenant_id=sample_tenant_id,
        recipient=RecipientSchema(user_id=sample_user_id, email="student@school.example"),
        notification_type=NotificationType.ASSIGNMENT,
        subject="Essay",
        content="Essay due Friday",
        channels=[Channel.EMAIL],
    )


class TestSchemas:
    """Tests for request validation."""

    def test_quiet_hours_format(self):
        with pytest.raises(ValidationError, match="HH:mm"):
            PreferenceUpdateRequest(
                notification_type=NotificationType.GRADE,
                quiet_hours_start="10pm",
                quiet_hours_end="07:00",
            )

    def test_quiet_hours_need_both_ends(self):
        with pytest.raises(ValidationError, match="both a start and an end"):
            PreferenceUpdateRequest(
                notification_type=NotificationType.GRADE, quiet_hours_start="22:00"
            )

    def test_empty_quiet_hours_mean_none(self):
        request = PreferenceUpdateRequest(
            notification_type=NotificationType.GRADE, quiet_hours_start="", quiet_hours_end=""
        )

        assert request.to_preference("u-1").has_quiet_hours is False

    def test_history_range_must_be_ordered(self):
        with pytest.raises(ValidationError, match="created_from"):
            NotificationHistoryQuery(
                created_from=datetime(2025, 2, 1, tzinfo=timezone.utc),
                created_to=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )

    def test_bulk_send_expands_recipients(self, sample_tenant_id):
        request = BulkSendRequest(
            tenant_id=sample_tenant_id,
            recipients=[RecipientSchema(user_id="a"), RecipientSchema(user_id="b")],
            notification_type=NotificationType.SCHEDULE_CHANGE,
            content="Room 12 moved",
            priority=Priority.HIGH,
        )

        requests = request.to_requests()

        assert [r.user_id for r in requests] == ["a", "b"]
        assert all(r.priority is Priority.HIGH for r in requests)
        assert requests[0].requested_channels == []


class TestPreferenceService:
    """Tests for PreferenceService."""

    @pytest.mark.asyncio
    async def test_update_and_read_back(self, service, sample_user_id, sample_tenant_id):
        response = await service.preferences.update_preference(
            sample_user_id,
            PreferenceUpdateRequest(
                notification_type=NotificationType.GRADE,
                delivery_channels=[Channel.IN_APP, Channel.EMAIL],
                frequency=Frequency.WEEKLY_DIGEST,
            ),
            tenant_id=sample_tenant_id,
        )
        fetched = await service.preferences.get_preference(sample_user_id, NotificationType.GRADE)

        assert response.delivery_channels == [Channel.EMAIL, Channel.IN_APP]
        assert fetched.frequency is Frequency.WEEKLY_DIGEST
        assert fetched.created_at is not None

    @pytest.mark.asyncio
    async def test_invalid_channel_propagates(self, service, sample_user_id):
        with pytest.raises(InvalidChannelError):
            await service.preferences.update_preference(
                sample_user_id,
                PreferenceUpdateRequest(
                    notification_type=NotificationType.BILLING,
                    delivery_channels=[Channel.PUSH],
                ),
            )

    @pytest.mark.asyncio
    async def test_bulk_update_reports_each_entry(self, service, sample_user_id):
        results = await service.preferences.bulk_update_preferences(
            sample_user_id,
            BulkPreferenceUpdateRequest(
                preferences=[
                    PreferenceUpdateRequest(notification_type=NotificationType.MESSAGE),
                    PreferenceUpdateRequest(
                        notification_type=NotificationType.SECURITY,
                        delivery_channels=[Channel.IN_APP],
                    ),
                ]
            ),
        )

        assert [r.success for r in results] == [True, False]
        assert "in_app" in results[1].error

    @pytest.mark.asyncio
    async def test_effective_preference_names_source(
        self, service, sample_user_id, sample_tenant_id
    ):
        await service.preferences.set_tenant_default(
            sample_tenant_id,
            PreferenceUpdateRequest(
                notification_type=NotificationType.ATTENDANCE,
                delivery_channels=[Channel.SMS],
            ),
        )

        effective = await service.preferences.get_effective_preference(
            sample_user_id, NotificationType.ATTENDANCE, tenant_id=sample_tenant_id
        )

        assert effective["source"] == "tenant_default"
        assert effective["preference"]["delivery_channels"] == ["sms"]

    @pytest.mark.asyncio
    async def test_delete_and_reset(self, service, sample_user_id):
        for notification_type in (NotificationType.GRADE, NotificationType.SYSTEM):
            await service.preferences.update_preference(
                sample_user_id, PreferenceUpdateRequest(notification_type=notification_type)
            )

        await service.preferences.delete_preference(sample_user_id, NotificationType.GRADE)

        with pytest.raises(PreferenceNotFoundError):
            await service.preferences.get_preference(sample_user_id, NotificationType.GRADE)
        assert await service.preferences.reset_to_defaults(sample_user_id) == 1
        assert await service.preferences.get_preferences(sample_user_id) == []


class TestNotificationService:
    """Tests for NotificationService."""

    @pytest.mark.asyncio
    async def test_send_and_get(self, service, send_request, sample_tenant_id):
        instance_id = await service.send(send_request)

        response = await service.get_notification(instance_id, tenant_id=sample_tenant_id)

        assert response.status is DeliveryStatus.SENT
        assert response.channel is Channel.EMAIL

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_read(self, service, send_request):
        instance_id = await service.send(send_request)

        with pytest.raises(NotificationNotFoundError):
            await service.get_notification(instance_id, tenant_id="another-school")

    @pytest.mark.asyncio
    async def test_outcome_read_and_unread_count(
        self, service, send_request, sample_tenant_id, sample_user_id
    ):
        instance_id = await service.send(send_request)
        assert await service.get_unread_count(sample_tenant_id, sample_user_id) == 1

        await service.report_outcome(instance_id, TransportOutcome.DELIVERED)
        response = await service.mark_read(instance_id)

        assert response.status is DeliveryStatus.READ
        assert await service.get_unread_count(sample_tenant_id, sample_user_id) == 0

    @pytest.mark.asyncio
    async def test_cancel_future_notification(self, service, send_request, clock):
        request = send_request.model_copy(update={"scheduled_for": datetime(2025, 1, 8, tzinfo=timezone.utc)})
        instance_id = await service.send(request)

        response = await service.cancel(instance_id, reason="assignment withdrawn")

        assert response.status is DeliveryStatus.SUPPRESSED
        assert response.failure_reason == "assignment withdrawn"

    @pytest.mark.asyncio
    async def test_send_bulk(self, service, sample_tenant_id):
        result = await service.send_bulk(
            BulkSendRequest(
                tenant_id=sample_tenant_id,
                recipients=[
                    RecipientSchema(user_id="a", email="a@school.example"),
                    RecipientSchema(user_id="b"),
                ],
                notification_type=NotificationType.ANNOUNCEMENT,
                content="Snow day",
                channels=[Channel.EMAIL],
            )
        )

        assert result.queued == 1
        assert result.suppressed == 1


class TestBuildNotificationService:
    """Tests for wiring the service from settings."""

    @pytest.mark.asyncio
    async def test_memory_backends_deliver_through_log_channel(self, send_request):
        service = await build_notification_service(
            Settings(), event_bus=EventBus(), use_timers=False
        )
        try:
            instance_id = await service.send(send_request)
            response = await service.get_notification(instance_id)
        finally:
            await service.close()

        assert response.status is DeliveryStatus.DELIVERED
        assert response.delivered_at is not None

    @pytest.mark.asyncio
    async def test_process_wide_service_lifecycle(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            get_notification_service()

        service = await init_notification_service(Settings(), event_bus=EventBus())
        try:
            assert get_notification_service() is service
        finally:
            await close_notification_service()

        with pytest.raises(RuntimeError):
            get_notification_service()
