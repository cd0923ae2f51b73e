# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exceptions raised by the notification engine."""

from collections.abc import Iterable


class NotificationError(Exception):
    """Base exception for notification engine errors."""

    pass


class InvalidChannelError(NotificationError):
    """Raised when a preference names channels its type does not support.

    Attributes:
        notification_type: Type the preference targets.
        channels: Every offending channel, sorted by value.
    """

    def __init__(self, notification_type: str, channels: Iterable[str]) -> None:
        self.notification_type = notification_type
        self.channels = sorted(channels)
        super().__init__(
            f"Channels not valid for notification type '{notification_type}': "
            f"{', '.join(self.channels)}"
        )


class InvalidPreferenceError(NotificationError):
    """Raised when a preference record is malformed (quiet hours, frequency)."""

    pass


class PreferenceNotFoundError(NotificationError):
    """Raised when an explicit preference read or delete finds no record."""

    pass


class NotificationNotFoundError(NotificationError):
    """Raised when a notification instance ID is unknown."""

    pass


class InvalidTransitionError(NotificationError):
    """Raised when a delivery state change is not in the transition table.

    Attributes:
        current: State the instance is in.
        attempted: State the caller tried to move it to.
    """

    def __init__(self, current: str, attempted: str, instance_id: str | None = None) -> None:
        self.current = current
        self.attempted = attempted
        self.instance_id = instance_id
        target = f" for notification {instance_id}" if instance_id else ""
        super().__init__(f"Invalid transition{target}: {current} -> {attempted}")


class ConcurrentUpdateError(InvalidTransitionError):
    """Raised when another writer moved an instance between its load and its write.

    ``current`` is the state the instance was loaded in; it no longer holds.
    """

    def __init__(self, instance_id: str, current: str, attempted: str) -> None:
        self.current = current
        self.attempted = attempted
        self.instance_id = instance_id
        NotificationError.__init__(
            self,
            f"Notification {instance_id} left {current} before the move to {attempted}",
        )


class TransportFailure(NotificationError):
    """Raised by a transport that could not hand a notification off.

    Attributes:
        retryable: Whether another attempt may succeed.
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)
