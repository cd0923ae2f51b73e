# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Transport that routes dispatch events to registered channels."""

import logging

from notifyhub.core.notifications.exceptions import TransportFailure
from notifyhub.core.notifications.models import Channel
from notifyhub.core.notifications.transport import DispatchEvent, Transport, TransportReceipt
from notifyhub.infrastructure.notifications.channels.base import BaseChannel

logger = logging.getLogger(__name__)


class ChannelTransport(Transport):
    """Routes each event to the channel implementation for its channel.

    Attributes:
        channels: Registered channels keyed by channel type.
    """

    def __init__(self, channels: list[BaseChannel] | None = None) -> None:
        self.channels: dict[Channel, BaseChannel] = {}
        for channel in channels or []:
            self.register(channel)

    def register(self, channel: BaseChannel) -> None:
        """Register (or replace) the implementation for a channel type."""
        self.channels[channel.channel_type] = channel
        logger.debug("Registered %s channel: %s", channel.channel_type.value, type(channel).__name__)

    async def send(self, event: DispatchEvent) -> TransportReceipt:
        """Send through the event's channel.

        Raises:
            TransportFailure: If no channel is registered for the event
                (not retryable).
        """
        channel = self.channels.get(event.channel)
        if channel is None:
            raise TransportFailure(
                f"No transport registered for channel {event.channel.value}",
                retryable=False,
            )

        result = await channel.send(event)
        logger.debug("Channel result for %s: %s", ",".join(event.instance_ids), result.to_dict())
        return result.to_receipt()
