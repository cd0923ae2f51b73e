# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Hand-off boundary between the engine and delivery transports.

On every ``scheduled -> sent`` move the engine builds one DispatchEvent and
passes it to a Transport. Digest buckets produce a single event carrying
all members in bucket order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from notifyhub.core.notifications.models import (
    Channel,
    NotificationInstance,
    NotificationType,
    Recipient,
    TransportOutcome,
)


@dataclass(frozen=True)
class DispatchEvent:
    """A dispatch-ready delivery.

    Attributes:
        channel: Channel chosen for this attempt.
        recipient: Recipient addresses.
        instances: Instances covered; more than one only for digests.
        subject: Subject line; digests get a generated one.
        content: Body text; digests join member contents.
        digest_bucket: Bucket key when this is a digest delivery.
    """

    channel: Channel
    recipient: Recipient
    instances: tuple[NotificationInstance, ...]
    subject: str | None
    content: str
    digest_bucket: str | None = None

    @property
    def is_digest(self) -> bool:
        return self.digest_bucket is not None

    @property
    def instance_ids(self) -> list[str]:
        return [i.id for i in self.instances]

    @property
    def address(self) -> str | None:
        return self.recipient.address_for(self.channel)

    @property
    def notification_type(self) -> NotificationType:
        return self.instances[0].notification_type

    @classmethod
    def single(cls, instance: NotificationInstance) -> "DispatchEvent":
        if instance.channel is None:
            raise ValueError(f"Notification {instance.id} has no chosen channel")
        return cls(
            channel=instance.channel,
            recipient=instance.recipient,
            instances=(instance,),
            subject=instance.subject,
            content=instance.content,
        )

    @classmethod
    def digest(cls, bucket: str, members: list[NotificationInstance]) -> "DispatchEvent":
        """Aggregate bucket members, already in bucket order, into one event."""
        first = members[0]
        if first.channel is None:
            raise ValueError(f"Notification {first.id} has no chosen channel")
        lines = []
        for member in members:
            lines.append(f"{member.subject}: {member.content}" if member.subject else member.content)
        return cls(
            channel=first.channel,
            recipient=first.recipient,
            instances=tuple(members),
            subject=f"{len(members)} {first.notification_type.value} notifications",
            content="\n".join(lines),
            digest_bucket=bucket,
        )


@dataclass(frozen=True)
class TransportReceipt:
    """What a transport knows right after the hand-off.

    ``outcome`` None means the transport accepted the event and will report
    the final outcome later through ``report_outcome``.
    """

    outcome: TransportOutcome | None = None
    detail: str | None = None
    message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Transport(ABC):
    """Delivers dispatch events. Implementations live outside the engine."""

    @abstractmethod
    async def send(self, event: DispatchEvent) -> TransportReceipt:
        """Hand an event off.

        Raises:
            TransportFailure: If the hand-off failed.
        """
