# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event infrastructure for notifyhub.

Components:
- EventBus: In-memory pub/sub with pattern matching
- EventTypes: Centralized event type constants
"""

from notifyhub.infrastructure.events.bus import (
    EventBus,
    EventData,
    EventHandler,
    get_event_bus,
    reset_event_bus,
)
from notifyhub.infrastructure.events.types import EventTypes, event_for_status

__all__ = [
    "EventBus",
    "EventData",
    "EventHandler",
    "EventTypes",
    "event_for_status",
    "get_event_bus",
    "reset_event_bus",
]
