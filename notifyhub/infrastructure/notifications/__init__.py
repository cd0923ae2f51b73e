# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification delivery adapters.

The engine hands dispatch events to a Transport. ChannelTransport routes
each event to the channel implementation registered for its channel.
"""

from notifyhub.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelStatus,
    ChannelTransport,
    InAppChannel,
    InAppInbox,
    LogChannel,
)

__all__ = [
    "BaseChannel",
    "ChannelResult",
    "ChannelStatus",
    "ChannelTransport",
    "InAppChannel",
    "InAppInbox",
    "LogChannel",
]
