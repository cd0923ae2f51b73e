# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Storage interfaces for preferences and notification instances.

The engine only talks to these abstract repositories. In-memory versions
live here for tests and single-process use; SQLAlchemy versions live in
``notifyhub.infrastructure.database.repositories``.

In-memory repositories hand out copies, so a caller mutating an instance
does not change stored state until it writes it back.

Instance writes are conditional: ``save_if`` only lands when the stored
row still has the status and retry count the caller loaded. Engines in
different processes share no locks, so this check is what lets exactly one
of them win a transition.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from notifyhub.core.notifications.models import (
    DeliveryStatus,
    NotificationInstance,
    NotificationPreference,
    NotificationType,
    Priority,
)

PreferenceKey = tuple[str | None, NotificationType, str | None]


@dataclass(frozen=True)
class StoredState:
    """Status and attempt an instance must still have for a write to land."""

    status: DeliveryStatus
    retry_count: int

    @classmethod
    def of(cls, instance: NotificationInstance) -> "StoredState":
        return cls(instance.status, instance.retry_count)


@dataclass
class InstanceFilter:
    """Filters for instance queries. None means "any"."""

    tenant_id: str | None = None
    user_id: str | None = None
    notification_type: NotificationType | None = None
    status: DeliveryStatus | None = None
    priority: Priority | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None

    def matches(self, instance: NotificationInstance) -> bool:
        if self.tenant_id is not None and instance.tenant_id != self.tenant_id:
            return False
        if self.user_id is not None and instance.user_id != self.user_id:
            return False
        if self.notification_type is not None and instance.notification_type != self.notification_type:
            return False
        if self.status is not None and instance.status != self.status:
            return False
        if self.priority is not None and instance.priority != self.priority:
            return False
        if self.created_from is not None and instance.created_at < self.created_from:
            return False
        if self.created_to is not None and instance.created_at > self.created_to:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = f"{instance.subject or ''} {instance.content}".lower()
            if needle not in haystack:
                return False
        return True


class PreferenceRepository(ABC):
    """Persistence for explicit user preferences and tenant defaults."""

    @abstractmethod
    async def get(self, key: PreferenceKey) -> NotificationPreference | None:
        """Return the explicit user record for a key, if any."""

    @abstractmethod
    async def put(self, preference: NotificationPreference) -> NotificationPreference:
        """Insert or replace the record for ``preference.key``."""

    @abstractmethod
    async def delete(self, key: PreferenceKey) -> bool:
        """Delete one record. Returns False when nothing was stored."""

    @abstractmethod
    async def list_for_user(
        self, user_id: str, notification_type: NotificationType | None = None
    ) -> list[NotificationPreference]:
        """List a user's explicit records."""

    @abstractmethod
    async def list_for_tenant(self, tenant_id: str) -> list[NotificationPreference]:
        """List explicit user records belonging to a tenant."""

    @abstractmethod
    async def get_tenant_default(
        self, tenant_id: str, notification_type: NotificationType
    ) -> NotificationPreference | None:
        """Return the tenant default for a type, if configured."""

    @abstractmethod
    async def put_tenant_default(
        self, tenant_id: str, preference: NotificationPreference
    ) -> NotificationPreference:
        """Insert or replace a tenant default."""


class InstanceRepository(ABC):
    """Persistence for notification instances. Instances are never deleted."""

    @abstractmethod
    async def add(self, instance: NotificationInstance) -> None:
        """Store a new instance."""

    @abstractmethod
    async def save_if(self, instance: NotificationInstance, expected: StoredState) -> bool:
        """Persist an instance only if its stored state still equals ``expected``.

        Returns False, writing nothing, when another writer got there first.
        """

    @abstractmethod
    async def save_many_if(
        self, changes: list[tuple[NotificationInstance, StoredState]]
    ) -> set[str]:
        """Apply ``save_if`` to several instances in one transaction.

        Returns the IDs that were written.
        """

    @abstractmethod
    async def get(self, instance_id: str) -> NotificationInstance | None:
        """Load an instance by ID."""

    @abstractmethod
    async def get_many(self, instance_ids: list[str]) -> list[NotificationInstance]:
        """Load every known instance among the IDs, in no particular order."""

    @abstractmethod
    async def find(
        self,
        filters: InstanceFilter,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[NotificationInstance], int]:
        """Query instances newest first. Returns (page items, total matches)."""

    @abstractmethod
    async def list_due(self, now: datetime, limit: int) -> list[NotificationInstance]:
        """Scheduled, non-bucketed instances whose dispatch time has passed."""


class InMemoryPreferenceRepository(PreferenceRepository):
    """Dictionary-backed preference repository."""

    def __init__(self) -> None:
        self._records: dict[PreferenceKey, NotificationPreference] = {}
        self._tenant_defaults: dict[tuple[str, NotificationType], NotificationPreference] = {}

    async def get(self, key: PreferenceKey) -> NotificationPreference | None:
        return self._records.get(key)

    async def put(self, preference: NotificationPreference) -> NotificationPreference:
        self._records[preference.key] = preference
        return preference

    async def delete(self, key: PreferenceKey) -> bool:
        return self._records.pop(key, None) is not None

    async def list_for_user(
        self, user_id: str, notification_type: NotificationType | None = None
    ) -> list[NotificationPreference]:
        return [
            p
            for p in self._records.values()
            if p.user_id == user_id
            and (notification_type is None or p.notification_type == notification_type)
        ]

    async def list_for_tenant(self, tenant_id: str) -> list[NotificationPreference]:
        return [p for p in self._records.values() if p.tenant_id == tenant_id]

    async def get_tenant_default(
        self, tenant_id: str, notification_type: NotificationType
    ) -> NotificationPreference | None:
        return self._tenant_defaults.get((tenant_id, notification_type))

    async def put_tenant_default(
        self, tenant_id: str, preference: NotificationPreference
    ) -> NotificationPreference:
        self._tenant_defaults[(tenant_id, preference.notification_type)] = preference
        return preference


class InMemoryInstanceRepository(InstanceRepository):
    """Dictionary-backed instance repository."""

    def __init__(self) -> None:
        self._instances: dict[str, NotificationInstance] = {}

    async def add(self, instance: NotificationInstance) -> None:
        self._instances[instance.id] = copy.deepcopy(instance)

    async def save_if(self, instance: NotificationInstance, expected: StoredState) -> bool:
        stored = self._instances.get(instance.id)
        if stored is None or StoredState.of(stored) != expected:
            return False
        self._instances[instance.id] = copy.deepcopy(instance)
        return True

    async def save_many_if(
        self, changes: list[tuple[NotificationInstance, StoredState]]
    ) -> set[str]:
        written = set()
        for instance, expected in changes:
            if await self.save_if(instance, expected):
                written.add(instance.id)
        return written

    async def get(self, instance_id: str) -> NotificationInstance | None:
        instance = self._instances.get(instance_id)
        return copy.deepcopy(instance) if instance is not None else None

    async def get_many(self, instance_ids: list[str]) -> list[NotificationInstance]:
        return [
            copy.deepcopy(self._instances[i]) for i in instance_ids if i in self._instances
        ]

    async def find(
        self,
        filters: InstanceFilter,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[NotificationInstance], int]:
        matches = [i for i in self._instances.values() if filters.matches(i)]
        matches.sort(key=lambda i: (i.created_at, i.id), reverse=True)
        end = None if limit is None else offset + limit
        return [copy.deepcopy(i) for i in matches[offset:end]], len(matches)

    async def list_due(self, now: datetime, limit: int) -> list[NotificationInstance]:
        due = [
            i
            for i in self._instances.values()
            if i.status == DeliveryStatus.SCHEDULED
            and i.digest_bucket is None
            and i.scheduled_for is not None
            and i.scheduled_for <= now
        ]
        due.sort(key=lambda i: (i.scheduled_for, i.id))
        return [copy.deepcopy(i) for i in due[:limit]]
