# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification delivery and eligibility engine.

Components, leaf first:
- PreferenceStore: layered preference resolution and writes
- EligibilityResolver: whether, where and whether-deferred
- DispatchScheduler: when, including digest buckets
- DeliveryStateMachine: lifecycle transitions and retry policy
- NotificationEngine: orchestration, locking and dispatch

Usage:
    from notifyhub.core.notifications import (
        InMemoryInstanceRepository,
        InMemoryPreferenceRepository,
        NotificationEngine,
        PreferenceStore,
    )

    store = PreferenceStore(InMemoryPreferenceRepository())
    engine = NotificationEngine(store, InMemoryInstanceRepository(), transport)
    instance_id = await engine.submit(request)
"""

from notifyhub.core.notifications.models import (
    CHANNEL_PRIORITY,
    Channel,
    DeliveryStatus,
    EffectivePreference,
    EligibilityDecision,
    Frequency,
    NotificationInstance,
    NotificationPreference,
    NotificationRequest,
    NotificationType,
    PreferenceSource,
    Priority,
    Recipient,
    StatusChange,
    TransportOutcome,
    valid_channels_for,
)
from notifyhub.core.notifications.exceptions import (
    ConcurrentUpdateError,
    InvalidChannelError,
    InvalidPreferenceError,
    InvalidTransitionError,
    NotificationError,
    NotificationNotFoundError,
    PreferenceNotFoundError,
    TransportFailure,
)
from notifyhub.core.notifications.repository import (
    InMemoryInstanceRepository,
    InMemoryPreferenceRepository,
    InstanceFilter,
    InstanceRepository,
    PreferenceRepository,
    StoredState,
)
from notifyhub.core.notifications.preferences import (
    PreferenceStore,
    PreferenceSummary,
    PreferenceWriteResult,
)
from notifyhub.core.notifications.eligibility import EligibilityResolver
from notifyhub.core.notifications.scheduler import BucketKey, DispatchPlan, DispatchScheduler
from notifyhub.core.notifications.digest import DigestBucketStore, InMemoryDigestBucketStore
from notifyhub.core.notifications.state_machine import DeliveryStateMachine, RetryPolicy
from notifyhub.core.notifications.transport import DispatchEvent, Transport, TransportReceipt
from notifyhub.core.notifications.engine import BulkSubmitResult, NotificationEngine

__all__ = [
    # Models
    "CHANNEL_PRIORITY",
    "Channel",
    "DeliveryStatus",
    "EffectivePreference",
    "EligibilityDecision",
    "Frequency",
    "NotificationInstance",
    "NotificationPreference",
    "NotificationRequest",
    "NotificationType",
    "PreferenceSource",
    "Priority",
    "Recipient",
    "StatusChange",
    "TransportOutcome",
    "valid_channels_for",
    # Errors
    "NotificationError",
    "InvalidChannelError",
    "InvalidPreferenceError",
    "InvalidTransitionError",
    "ConcurrentUpdateError",
    "NotificationNotFoundError",
    "PreferenceNotFoundError",
    "TransportFailure",
    # Storage
    "InstanceFilter",
    "InstanceRepository",
    "PreferenceRepository",
    "StoredState",
    "InMemoryInstanceRepository",
    "InMemoryPreferenceRepository",
    "DigestBucketStore",
    "InMemoryDigestBucketStore",
    # Components
    "PreferenceStore",
    "PreferenceSummary",
    "PreferenceWriteResult",
    "EligibilityResolver",
    "BucketKey",
    "DispatchPlan",
    "DispatchScheduler",
    "DeliveryStateMachine",
    "RetryPolicy",
    "DispatchEvent",
    "Transport",
    "TransportReceipt",
    "NotificationEngine",
    "BulkSubmitResult",
]
