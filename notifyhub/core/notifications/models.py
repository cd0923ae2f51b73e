# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain types for the notification engine.

Enums are ``str`` based so they serialize directly into JSON columns and
event payloads. Preferences are frozen: an update replaces the whole
record, so readers never observe a half-written preference.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from notifyhub.utils.datetime import format_iso


class Channel(str, Enum):
    """Delivery channels a notification can travel through."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WEBSOCKET = "websocket"
    IN_APP = "in_app"


# Order in which allowed channels are attempted.
CHANNEL_PRIORITY: tuple[Channel, ...] = (
    Channel.PUSH,
    Channel.EMAIL,
    Channel.SMS,
    Channel.IN_APP,
    Channel.WEBSOCKET,
)


class NotificationType(str, Enum):
    """Kinds of notifications the school platform emits."""

    ANNOUNCEMENT = "announcement"
    ASSIGNMENT = "assignment"
    GRADE = "grade"
    ATTENDANCE = "attendance"
    SCHEDULE_CHANGE = "schedule_change"
    BILLING = "billing"
    MESSAGE = "message"
    SECURITY = "security"
    SYSTEM = "system"


_ALL_CHANNELS = frozenset(Channel)

VALID_CHANNELS_BY_TYPE: dict[NotificationType, frozenset[Channel]] = {
    NotificationType.ANNOUNCEMENT: _ALL_CHANNELS,
    NotificationType.ASSIGNMENT: _ALL_CHANNELS,
    NotificationType.GRADE: frozenset({Channel.EMAIL, Channel.PUSH, Channel.IN_APP}),
    NotificationType.ATTENDANCE: _ALL_CHANNELS,
    NotificationType.SCHEDULE_CHANGE: _ALL_CHANNELS,
    NotificationType.BILLING: frozenset({Channel.EMAIL, Channel.SMS, Channel.IN_APP}),
    NotificationType.MESSAGE: frozenset(
        {Channel.PUSH, Channel.IN_APP, Channel.WEBSOCKET, Channel.EMAIL}
    ),
    NotificationType.SECURITY: frozenset({Channel.EMAIL, Channel.SMS, Channel.PUSH}),
    NotificationType.SYSTEM: _ALL_CHANNELS,
}


def valid_channels_for(notification_type: NotificationType) -> frozenset[Channel]:
    """Channels a notification type may be delivered through."""
    return VALID_CHANNELS_BY_TYPE.get(notification_type, _ALL_CHANNELS)


def order_channels(channels: "set[Channel] | frozenset[Channel] | list[Channel]") -> list[Channel]:
    """Sort channels into delivery priority order."""
    wanted = set(channels)
    return [c for c in CHANNEL_PRIORITY if c in wanted]


class Priority(str, Enum):
    """Notification priority. Only ``URGENT`` bypasses quiet hours and digests."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Frequency(str, Enum):
    """How often a user wants notifications of a type delivered."""

    IMMEDIATE = "immediate"
    DAILY_DIGEST = "daily_digest"
    WEEKLY_DIGEST = "weekly_digest"

    @property
    def is_digest(self) -> bool:
        return self is not Frequency.IMMEDIATE


class DeliveryStatus(str, Enum):
    """Lifecycle states of a notification instance."""

    PENDING = "pending"
    SUPPRESSED = "suppressed"
    SCHEDULED = "scheduled"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED_RETRYING = "failed_retrying"
    FAILED_FINAL = "failed_final"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        DeliveryStatus.READ,
        DeliveryStatus.FAILED_FINAL,
        DeliveryStatus.SUPPRESSED,
    }
)


class TransportOutcome(str, Enum):
    """Outcome a transport reports for one hand-off."""

    DELIVERED = "delivered"
    RETRYABLE_FAILURE = "retryable_failure"
    FINAL_FAILURE = "final_failure"


class PreferenceSource(str, Enum):
    """Which lookup strategy produced an effective preference."""

    TEMPLATE = "template"
    TYPE = "type"
    TENANT_DEFAULT = "tenant_default"
    GLOBAL_DEFAULT = "global_default"


@dataclass(frozen=True)
class NotificationPreference:
    """A user's (or tenant's) delivery preference for one notification type.

    Attributes:
        user_id: Owner of the record. None for a tenant default.
        notification_type: Type the record applies to.
        template_type: Narrows the record to one template; None covers all.
        tenant_id: Tenant the record belongs to.
        is_enabled: False suppresses delivery regardless of channels.
        delivery_channels: Channels the user accepts for this type.
        quiet_hours_start: "HH:mm" start of the local quiet window.
        quiet_hours_end: "HH:mm" end of the local quiet window.
        timezone: IANA zone name; None falls back to the process default.
        frequency: Immediate delivery or a digest cadence.
        metadata: Opaque mapping passed through unchanged.
    """

    user_id: str | None
    notification_type: NotificationType
    template_type: str | None = None
    tenant_id: str | None = None
    is_enabled: bool = True
    delivery_channels: frozenset[Channel] = field(default_factory=frozenset)
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str | None = None
    frequency: Frequency = Frequency.IMMEDIATE
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    created_at: datetime | None = field(default=None, compare=False)
    updated_at: datetime | None = field(default=None, compare=False)

    @property
    def key(self) -> tuple[str | None, NotificationType, str | None]:
        return (self.user_id, self.notification_type, self.template_type)

    @property
    def has_quiet_hours(self) -> bool:
        return bool(self.quiet_hours_start and self.quiet_hours_end)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "notification_type": self.notification_type.value,
            "template_type": self.template_type,
            "is_enabled": self.is_enabled,
            "delivery_channels": [c.value for c in order_channels(self.delivery_channels)],
            "quiet_hours_start": self.quiet_hours_start,
            "quiet_hours_end": self.quiet_hours_end,
            "timezone": self.timezone,
            "frequency": self.frequency.value,
            "metadata": dict(self.metadata),
            "created_at": format_iso(self.created_at),
            "updated_at": format_iso(self.updated_at),
        }


@dataclass(frozen=True)
class EffectivePreference:
    """The preference that applied to a request, plus where it came from."""

    preference: NotificationPreference
    source: PreferenceSource


@dataclass
class Recipient:
    """Addresses of one recipient, per channel.

    Attributes:
        user_id: Recipient's user ID; also the in-app and websocket address.
        email: Email address.
        phone: Phone number for SMS.
        push_token: Device token for push.
        full_name: Display name, used by transports for greetings.
    """

    user_id: str
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None
    full_name: str | None = None

    def address_for(self, channel: Channel) -> str | None:
        """Return the address used on a channel, if the recipient has one."""
        if channel is Channel.EMAIL:
            return self.email
        if channel is Channel.SMS:
            return self.phone
        if channel is Channel.PUSH:
            return self.push_token
        return self.user_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "phone": self.phone,
            "push_token": self.push_token,
            "full_name": self.full_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipient":
        return cls(
            user_id=data["user_id"],
            email=data.get("email"),
            phone=data.get("phone"),
            push_token=data.get("push_token"),
            full_name=data.get("full_name"),
        )


@dataclass
class NotificationRequest:
    """An inbound request to notify one user.

    ``requested_channels`` empty means any channel the preference allows.
    ``scheduled_for`` in the future delays the earliest dispatch.
    """

    tenant_id: str
    user_id: str
    notification_type: NotificationType
    content: str
    recipient: Recipient
    priority: Priority = Priority.NORMAL
    subject: str | None = None
    template_type: str | None = None
    template_ref: str | None = None
    requested_channels: list[Channel] = field(default_factory=list)
    scheduled_for: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusChange:
    """One entry in an instance's append-only status log."""

    from_status: DeliveryStatus
    to_status: DeliveryStatus
    at: datetime
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_status.value,
            "to": self.to_status.value,
            "at": format_iso(self.at),
            "reason": self.reason,
        }


@dataclass
class NotificationInstance:
    """One concrete notification to one user, tracked until terminal.

    Mutated only through the delivery state machine.
    """

    id: str
    tenant_id: str
    user_id: str
    notification_type: NotificationType
    content: str
    recipient: Recipient
    created_at: datetime
    priority: Priority = Priority.NORMAL
    status: DeliveryStatus = DeliveryStatus.PENDING
    subject: str | None = None
    template_type: str | None = None
    template_ref: str | None = None
    requested_channels: list[Channel] = field(default_factory=list)
    allowed_channels: list[Channel] = field(default_factory=list)
    channel: Channel | None = None
    scheduled_for: datetime | None = None
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    last_attempt_at: datetime | None = None
    failure_reason: str | None = None
    retry_count: int = 0
    timezone: str | None = None
    digest_bucket: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    status_log: list[StatusChange] = field(default_factory=list)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "notification_type": self.notification_type.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "subject": self.subject,
            "content": self.content,
            "recipient": self.recipient.to_dict(),
            "template_type": self.template_type,
            "template_ref": self.template_ref,
            "requested_channels": [c.value for c in self.requested_channels],
            "allowed_channels": [c.value for c in self.allowed_channels],
            "channel": self.channel.value if self.channel else None,
            "scheduled_for": format_iso(self.scheduled_for),
            "scheduled_at": format_iso(self.scheduled_at),
            "sent_at": format_iso(self.sent_at),
            "delivered_at": format_iso(self.delivered_at),
            "read_at": format_iso(self.read_at),
            "last_attempt_at": format_iso(self.last_attempt_at),
            "failure_reason": self.failure_reason,
            "retry_count": self.retry_count,
            "timezone": self.timezone,
            "digest_bucket": self.digest_bucket,
            "created_at": format_iso(self.created_at),
            "metadata": dict(self.metadata),
            "status_log": [c.to_dict() for c in self.status_log],
        }


@dataclass(frozen=True)
class EligibilityDecision:
    """Result of evaluating a request against the effective preference.

    Attributes:
        should_send: False means the instance is suppressed.
        allowed_channels: Channels in delivery priority order.
        reason: Why the request was suppressed or deferred; None otherwise.
        deferred: True when quiet hours push dispatch later.
        effective: The preference that was applied.
        zone_name: Zone the decision was evaluated in.
    """

    should_send: bool
    allowed_channels: tuple[Channel, ...]
    reason: str | None
    effective: EffectivePreference
    zone_name: str
    deferred: bool = False

    @property
    def preference(self) -> NotificationPreference:
        return self.effective.preference
