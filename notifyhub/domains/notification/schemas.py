# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification request/response schemas.

Validated input for the notification and preference services. Each request
converts into the engine's domain objects; responses are built from them.
"""

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from notifyhub.core.notifications import (
    Channel,
    DeliveryStatus,
    Frequency,
    NotificationPreference,
    NotificationRequest,
    NotificationType,
    Priority,
    Recipient,
)

HHMM_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


class PreferenceUpdateRequest(BaseModel):
    """Create or replace one preference record."""

    notification_type: NotificationType
    template_type: str | None = Field(
        default=None,
        max_length=100,
        description="Narrows the record to one template; None covers the whole type",
    )
    is_enabled: bool = True
    delivery_channels: list[Channel] = Field(default_factory=list)
    quiet_hours_start: str | None = Field(default=None, description="HH:mm")
    quiet_hours_end: str | None = Field(default=None, description="HH:mm")
    timezone: str | None = Field(default=None, max_length=64)
    frequency: Frequency = Frequency.IMMEDIATE
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_hhmm(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        if not HHMM_PATTERN.match(value):
            raise ValueError("Quiet hours must use HH:mm format")
        return value

    @model_validator(mode="after")
    def validate_quiet_window(self) -> "PreferenceUpdateRequest":
        if bool(self.quiet_hours_start) != bool(self.quiet_hours_end):
            raise ValueError("Quiet hours need both a start and an end")
        return self

    def to_preference(self, user_id: str | None, tenant_id: str | None = None) -> NotificationPreference:
        return NotificationPreference(
            user_id=user_id,
            notification_type=self.notification_type,
            template_type=self.template_type,
            tenant_id=tenant_id,
            is_enabled=self.is_enabled,
            delivery_channels=frozenset(self.delivery_channels),
            quiet_hours_start=self.quiet_hours_start,
            quiet_hours_end=self.quiet_hours_end,
            timezone=self.timezone,
            frequency=self.frequency,
            metadata=dict(self.metadata),
        )


class BulkPreferenceUpdateRequest(BaseModel):
    """Several preference records for one user, applied independently."""

    preferences: list[PreferenceUpdateRequest] = Field(min_length=1, max_length=100)


class PreferenceResponse(BaseModel):
    """A stored preference record."""

    user_id: str | None
    tenant_id: str | None
    notification_type: NotificationType
    template_type: str | None
    is_enabled: bool
    delivery_channels: list[Channel]
    quiet_hours_start: str | None
    quiet_hours_end: str | None
    timezone: str | None
    frequency: Frequency
    metadata: dict[str, Any]
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_preference(cls, preference: NotificationPreference) -> "PreferenceResponse":
        return cls.model_validate(preference.to_dict())


class BulkPreferenceResult(BaseModel):
    """Outcome of one entry in a bulk preference update."""

    notification_type: NotificationType
    template_type: str | None
    success: bool
    error: str | None = None


class RecipientSchema(BaseModel):
    """Per-channel addresses of a recipient."""

    user_id: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None
    full_name: str | None = None

    def to_recipient(self) -> Recipient:
        return Recipient(**self.model_dump())


class SendNotificationRequest(BaseModel):
    """Notify one user."""

    tenant_id: str = Field(min_length=1)
    recipient: RecipientSchema
    notification_type: NotificationType
    content: str = Field(min_length=1)
    subject: str | None = Field(default=None, max_length=255)
    priority: Priority = Priority.NORMAL
    template_type: str | None = None
    template_ref: str | None = None
    channels: list[Channel] = Field(
        default_factory=list,
        description="Requested channels; empty means any channel the preference allows",
    )
    scheduled_for: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_request(self) -> NotificationRequest:
        return NotificationRequest(
            tenant_id=self.tenant_id,
            user_id=self.recipient.user_id,
            notification_type=self.notification_type,
            content=self.content,
            recipient=self.recipient.to_recipient(),
            priority=self.priority,
            subject=self.subject,
            template_type=self.template_type,
            template_ref=self.template_ref,
            requested_channels=list(self.channels),
            scheduled_for=self.scheduled_for,
            metadata=dict(self.metadata),
        )


class BulkSendRequest(BaseModel):
    """Send the same notification to many recipients."""

    tenant_id: str = Field(min_length=1)
    recipients: list[RecipientSchema] = Field(min_length=1, max_length=1000)
    notification_type: NotificationType
    content: str = Field(min_length=1)
    subject: str | None = Field(default=None, max_length=255)
    priority: Priority = Priority.NORMAL
    template_type: str | None = None
    template_ref: str | None = None
    channels: list[Channel] = Field(default_factory=list)
    scheduled_for: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_requests(self) -> list[NotificationRequest]:
        return [
            SendNotificationRequest(
                recipient=recipient,
                **self.model_dump(exclude={"recipients"}),
            ).to_request()
            for recipient in self.recipients
        ]


class NotificationHistoryQuery(BaseModel):
    """Filters and pagination for the history listing."""

    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)
    user_id: str | None = None
    notification_type: NotificationType | None = None
    status: DeliveryStatus | None = None
    priority: Priority | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def validate_range(self) -> "NotificationHistoryQuery":
        if self.created_from and self.created_to and self.created_from > self.created_to:
            raise ValueError("created_from must not be after created_to")
        return self


class NotificationResponse(BaseModel):
    """One notification instance as returned to callers."""

    id: str
    tenant_id: str
    user_id: str
    notification_type: NotificationType
    priority: Priority
    status: DeliveryStatus
    subject: str | None
    content: str
    channel: Channel | None
    allowed_channels: list[Channel]
    scheduled_at: datetime | None
    sent_at: datetime | None
    delivered_at: datetime | None
    read_at: datetime | None
    failure_reason: str | None
    retry_count: int
    digest_bucket: str | None
    created_at: datetime
    metadata: dict[str, Any]


class NotificationListResponse(BaseModel):
    """A page of notification instances."""

    items: list[NotificationResponse]
    total: int
    page: int
    limit: int
    pages: int


class MarkReadRequest(BaseModel):
    notification_ids: list[str] = Field(min_length=1, max_length=500)
