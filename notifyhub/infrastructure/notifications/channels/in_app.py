# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-app notification channel.

Stores messages in the recipient's inbox, which the application UI reads.
Storing the message is delivery, so this channel reports DELIVERED right
away.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from notifyhub.core.notifications.models import Channel
from notifyhub.core.notifications.transport import DispatchEvent
from notifyhub.infrastructure.notifications.channels.base import BaseChannel, ChannelResult
from notifyhub.utils.datetime import utc_now


@dataclass
class InboxMessage:
    """One entry in a user's in-app inbox.

    Attributes:
        id: Inbox message ID.
        user_id: Recipient user ID.
        notification_ids: Instances this message covers.
        notification_type: Type of notification.
        title: Message title.
        body: Message body.
        created_at: When the message was stored.
        expires_at: When the UI may hide the message.
        data: Metadata from the instances.
    """

    id: str
    user_id: str
    notification_ids: list[str]
    notification_type: str
    title: str | None
    body: str
    created_at: datetime
    expires_at: datetime
    data: dict[str, Any] = field(default_factory=dict)


class InAppInbox:
    """Process-local inbox store, newest message last."""

    def __init__(self) -> None:
        self._messages: dict[str, list[InboxMessage]] = {}

    async def store(self, message: InboxMessage) -> None:
        self._messages.setdefault(message.user_id, []).append(message)

    async def list_for_user(self, user_id: str) -> list[InboxMessage]:
        return list(self._messages.get(user_id, []))


class InAppChannel(BaseChannel):
    """In-app notification channel.

    Digest events become a single inbox message covering every member.
    """

    # Default expiration time for inbox messages
    DEFAULT_EXPIRATION_DAYS = 30

    def __init__(self, inbox: InAppInbox | None = None) -> None:
        """Initialize the in-app channel.

        Args:
            inbox: Inbox to store messages in; a fresh one when omitted.
        """
        super().__init__()
        self.inbox = inbox or InAppInbox()

    @property
    def channel_type(self) -> Channel:
        """Return the channel type."""
        return Channel.IN_APP

    async def send(self, event: DispatchEvent) -> ChannelResult:
        """Store an inbox message for the recipient."""
        now = utc_now()
        data: dict[str, Any] = {}
        for instance in event.instances:
            data.update(instance.metadata)

        message = InboxMessage(
            id=str(uuid4()),
            user_id=event.recipient.user_id,
            notification_ids=event.instance_ids,
            notification_type=event.notification_type.value,
            title=event.subject,
            body=event.content,
            created_at=now,
            expires_at=now + timedelta(days=self.DEFAULT_EXPIRATION_DAYS),
            data=data,
        )
        try:
            await self.inbox.store(message)
        except Exception as e:
            self.logger.error(
                "Failed to store in-app message for user %s",
                event.recipient.user_id,
                exc_info=True,
            )
            return self.create_failure_result(f"Inbox error: {e}")

        self.logger.info(
            "Created in-app message %s for user %s (%d notifications)",
            message.id,
            message.user_id,
            len(message.notification_ids),
        )
        return self.create_delivered_result(
            message_id=message.id,
            metadata={"inbox_message_id": message.id},
        )
