# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Logging channel for development.

Stands in for a real provider (SMTP, SMS gateway, push service) by
logging the event and reporting it delivered. Real providers register
their own BaseChannel for the same channel type.
"""

from uuid import uuid4

from notifyhub.core.notifications.models import Channel
from notifyhub.core.notifications.transport import DispatchEvent
from notifyhub.infrastructure.notifications.channels.base import BaseChannel, ChannelResult


class LogChannel(BaseChannel):
    """Logs dispatch events for one channel type."""

    def __init__(self, channel: Channel) -> None:
        super().__init__()
        self._channel = channel

    @property
    def channel_type(self) -> Channel:
        return self._channel

    async def send(self, event: DispatchEvent) -> ChannelResult:
        if not event.address:
            return self.create_skipped_result(
                f"Recipient {event.recipient.user_id} has no {self._channel.value} address"
            )
        message_id = str(uuid4())
        self.logger.info(
            "[%s] to=%s subject=%r notifications=%s",
            self._channel.value,
            event.address,
            event.subject,
            ",".join(event.instance_ids),
        )
        return self.create_delivered_result(message_id=message_id)
