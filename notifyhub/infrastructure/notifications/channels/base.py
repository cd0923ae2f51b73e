# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base classes for notification channels.

A channel delivers dispatch events through one medium (in-app, push,
email, SMS, websocket). Channels report what they know right after the
hand-off; providers with delivery receipts report the final outcome later
through the engine's ``report_outcome``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from notifyhub.core.notifications.models import Channel, TransportOutcome
from notifyhub.core.notifications.transport import DispatchEvent, TransportReceipt
from notifyhub.utils.datetime import format_iso, utc_now


class ChannelStatus(str, Enum):
    """Result status of a single channel send."""

    ACCEPTED = "accepted"
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ChannelResult:
    """Result of a channel send operation.

    Attributes:
        channel: Which channel was used.
        status: Send status.
        message_id: External message ID (if available).
        error_message: Error message if failed or skipped.
        retryable: Whether a failed send may succeed on retry.
        sent_at: When the send happened.
        metadata: Additional result metadata.
    """

    channel: Channel
    status: ChannelStatus
    message_id: str | None = None
    error_message: str | None = None
    retryable: bool = True
    sent_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and storage."""
        return {
            "channel": self.channel.value,
            "status": self.status.value,
            "message_id": self.message_id,
            "error_message": self.error_message,
            "retryable": self.retryable,
            "sent_at": format_iso(self.sent_at),
            "metadata": self.metadata,
        }

    def to_receipt(self) -> TransportReceipt:
        """Translate into the engine's receipt.

        A skipped send is a final failure: retrying cannot change it.
        """
        if self.status is ChannelStatus.ACCEPTED:
            return TransportReceipt(message_id=self.message_id, metadata=self.metadata)
        if self.status is ChannelStatus.DELIVERED:
            return TransportReceipt(
                outcome=TransportOutcome.DELIVERED,
                message_id=self.message_id,
                metadata=self.metadata,
            )
        retryable = self.retryable and self.status is ChannelStatus.FAILED
        return TransportReceipt(
            outcome=(
                TransportOutcome.RETRYABLE_FAILURE if retryable else TransportOutcome.FINAL_FAILURE
            ),
            detail=self.error_message,
            message_id=self.message_id,
            metadata=self.metadata,
        )


class BaseChannel(ABC):
    """Abstract base class for notification channels.

    Attributes:
        channel_type: The channel this implementation serves.
    """

    def __init__(self) -> None:
        """Initialize the channel."""
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    @abstractmethod
    def channel_type(self) -> Channel:
        """Return the channel type."""
        ...

    @abstractmethod
    async def send(self, event: DispatchEvent) -> ChannelResult:
        """Send a dispatch event through this channel.

        Args:
            event: The dispatch-ready event.

        Returns:
            ChannelResult with the send status.
        """
        ...

    def create_accepted_result(
        self,
        message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        """Handed off; the provider will confirm delivery later."""
        return ChannelResult(
            channel=self.channel_type,
            status=ChannelStatus.ACCEPTED,
            message_id=message_id,
            sent_at=utc_now(),
            metadata=metadata or {},
        )

    def create_delivered_result(
        self,
        message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        """Delivered synchronously (e.g. stored in the in-app inbox)."""
        return ChannelResult(
            channel=self.channel_type,
            status=ChannelStatus.DELIVERED,
            message_id=message_id,
            sent_at=utc_now(),
            metadata=metadata or {},
        )

    def create_failure_result(
        self,
        error_message: str,
        retryable: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        """Create a failed channel result.

        Args:
            error_message: Error description.
            retryable: Whether the engine should retry.
            metadata: Additional metadata.

        Returns:
            ChannelResult with FAILED status.
        """
        return ChannelResult(
            channel=self.channel_type,
            status=ChannelStatus.FAILED,
            error_message=error_message,
            retryable=retryable,
            sent_at=utc_now(),
            metadata=metadata or {},
        )

    def create_skipped_result(self, reason: str) -> ChannelResult:
        """Create a skipped channel result."""
        return ChannelResult(
            channel=self.channel_type,
            status=ChannelStatus.SKIPPED,
            error_message=reason,
            retryable=False,
            sent_at=utc_now(),
        )
