# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event type constants."""


class EventTypes:
    """Namespaced event type strings."""

    class Notification:
        SCHEDULED = "notification.scheduled"
        SUPPRESSED = "notification.suppressed"
        SENT = "notification.sent"
        DELIVERED = "notification.delivered"
        READ = "notification.read"
        FAILED = "notification.failed"
        RETRYING = "notification.retrying"
        ALL = "notification.*"


# Keyed by delivery status value.
STATUS_EVENTS: dict[str, str] = {
    "scheduled": EventTypes.Notification.SCHEDULED,
    "suppressed": EventTypes.Notification.SUPPRESSED,
    "sent": EventTypes.Notification.SENT,
    "delivered": EventTypes.Notification.DELIVERED,
    "read": EventTypes.Notification.READ,
    "failed_final": EventTypes.Notification.FAILED,
    "failed_retrying": EventTypes.Notification.RETRYING,
}


def event_for_status(status: str) -> str | None:
    """Event type published when an instance enters ``status``."""
    return STATUS_EVENTS.get(str(getattr(status, "value", status)))
