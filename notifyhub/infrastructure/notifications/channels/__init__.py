# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification channels for delivering dispatch events.

- InAppChannel: Stores messages in the user's in-app inbox
- LogChannel: Development stand-in for external providers
- ChannelTransport: Routes events to the channel for their channel type

Usage:
    from notifyhub.infrastructure.notifications.channels import (
        ChannelTransport,
        InAppChannel,
        LogChannel,
    )

    transport = ChannelTransport([InAppChannel(), LogChannel(Channel.EMAIL)])
    engine = NotificationEngine(store, instances, transport)
"""

from notifyhub.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelStatus,
)
from notifyhub.infrastructure.notifications.channels.in_app import (
    InAppChannel,
    InAppInbox,
    InboxMessage,
)
from notifyhub.infrastructure.notifications.channels.log import LogChannel
from notifyhub.infrastructure.notifications.channels.router import ChannelTransport

__all__ = [
    # Base types
    "BaseChannel",
    "ChannelResult",
    "ChannelStatus",
    # Channels
    "InAppChannel",
    "InAppInbox",
    "InboxMessage",
    "LogChannel",
    # Transport
    "ChannelTransport",
]
