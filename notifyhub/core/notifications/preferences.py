# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Preference store with layered resolution.

Resolution walks an ordered list of lookup strategies and stops at the
first match:

1. (user, type, template) record
2. (user, type) record with no template
3. tenant default for the type
4. global default: enabled, every valid channel, immediate, no quiet hours

Writes replace exactly one record and are serialized per record key.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any

from notifyhub.core.notifications.exceptions import (
    InvalidChannelError,
    InvalidPreferenceError,
    NotificationError,
    PreferenceNotFoundError,
)
from notifyhub.core.notifications.locks import KeyedLock
from notifyhub.core.notifications.models import (
    Channel,
    EffectivePreference,
    Frequency,
    NotificationPreference,
    NotificationType,
    PreferenceSource,
    valid_channels_for,
)
from notifyhub.core.notifications.quiet_hours import QuietHours
from notifyhub.core.notifications.repository import PreferenceRepository
from notifyhub.utils.datetime import Clock, utc_now

logger = logging.getLogger(__name__)


class LookupStrategy(ABC):
    """One step of preference resolution."""

    source: PreferenceSource

    @abstractmethod
    async def lookup(
        self,
        repository: PreferenceRepository,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None,
        tenant_id: str | None,
    ) -> NotificationPreference | None:
        """Return a matching preference or None to continue the chain."""


class TemplateLookup(LookupStrategy):
    source = PreferenceSource.TEMPLATE

    async def lookup(self, repository, user_id, notification_type, template_type, tenant_id):
        if template_type is None:
            return None
        return await repository.get((user_id, notification_type, template_type))


class TypeLookup(LookupStrategy):
    source = PreferenceSource.TYPE

    async def lookup(self, repository, user_id, notification_type, template_type, tenant_id):
        return await repository.get((user_id, notification_type, None))


class TenantDefaultLookup(LookupStrategy):
    source = PreferenceSource.TENANT_DEFAULT

    async def lookup(self, repository, user_id, notification_type, template_type, tenant_id):
        if tenant_id is None:
            return None
        return await repository.get_tenant_default(tenant_id, notification_type)


class GlobalDefaultLookup(LookupStrategy):
    """Always matches; terminates the chain."""

    source = PreferenceSource.GLOBAL_DEFAULT

    async def lookup(self, repository, user_id, notification_type, template_type, tenant_id):
        return global_default(user_id, notification_type, tenant_id)


DEFAULT_STRATEGIES: tuple[LookupStrategy, ...] = (
    TemplateLookup(),
    TypeLookup(),
    TenantDefaultLookup(),
    GlobalDefaultLookup(),
)


def global_default(
    user_id: str | None,
    notification_type: NotificationType,
    tenant_id: str | None = None,
) -> NotificationPreference:
    """Hard-coded fallback preference for a type."""
    return NotificationPreference(
        user_id=user_id,
        notification_type=notification_type,
        tenant_id=tenant_id,
        is_enabled=True,
        delivery_channels=valid_channels_for(notification_type),
        frequency=Frequency.IMMEDIATE,
    )


def validate_preference(preference: NotificationPreference) -> None:
    """Check a preference record before it is stored.

    Raises:
        InvalidChannelError: If any channel is not valid for the type.
        InvalidPreferenceError: If quiet hours or frequency are malformed.
    """
    if not isinstance(preference.frequency, Frequency):
        raise InvalidPreferenceError(f"Unknown frequency: {preference.frequency!r}")

    unknown = [c for c in preference.delivery_channels if not isinstance(c, Channel)]
    if unknown:
        raise InvalidChannelError(
            preference.notification_type.value, [str(c) for c in unknown]
        )
    invalid = set(preference.delivery_channels) - valid_channels_for(preference.notification_type)
    if invalid:
        raise InvalidChannelError(
            preference.notification_type.value, [c.value for c in invalid]
        )

    QuietHours.from_strings(preference.quiet_hours_start, preference.quiet_hours_end)


@dataclass
class PreferenceWriteResult:
    """Outcome of one entry in a bulk upsert."""

    notification_type: NotificationType
    template_type: str | None
    success: bool
    preference: NotificationPreference | None = None
    error: str | None = None


@dataclass
class PreferenceSummary:
    """Aggregate view of a tenant's explicit preferences."""

    tenant_id: str
    total: int = 0
    enabled_by_type: dict[str, int] = field(default_factory=dict)
    disabled_by_type: dict[str, int] = field(default_factory=dict)
    channel_usage: dict[str, int] = field(default_factory=dict)
    frequency_distribution: dict[str, int] = field(default_factory=dict)
    with_quiet_hours: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "total": self.total,
            "enabled_by_type": dict(self.enabled_by_type),
            "disabled_by_type": dict(self.disabled_by_type),
            "channel_usage": dict(self.channel_usage),
            "frequency_distribution": dict(self.frequency_distribution),
            "with_quiet_hours": self.with_quiet_hours,
        }


class PreferenceStore:
    """Reads and writes user preferences and tenant defaults.

    Attributes:
        repository: Backing storage.
        strategies: Ordered lookup chain used by resolve().
    """

    def __init__(
        self,
        repository: PreferenceRepository,
        strategies: tuple[LookupStrategy, ...] = DEFAULT_STRATEGIES,
        clock: Clock = utc_now,
    ) -> None:
        if not strategies or not isinstance(strategies[-1], GlobalDefaultLookup):
            raise ValueError("The lookup chain must end with GlobalDefaultLookup")
        self.repository = repository
        self.strategies = strategies
        self._clock = clock
        self._locks = KeyedLock()

    async def resolve(
        self,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None = None,
        tenant_id: str | None = None,
    ) -> EffectivePreference:
        """Return the preference that applies to a request.

        Never raises PreferenceNotFoundError; the chain always ends with
        the global default.
        """
        for strategy in self.strategies:
            preference = await strategy.lookup(
                self.repository, user_id, notification_type, template_type, tenant_id
            )
            if preference is not None:
                return EffectivePreference(preference=preference, source=strategy.source)
        raise AssertionError("unreachable: global default always matches")

    async def upsert(self, preference: NotificationPreference) -> NotificationPreference:
        """Create or fully replace one (user, type, template) record.

        Raises:
            InvalidChannelError: If a channel is not valid for the type.
            InvalidPreferenceError: If the record is malformed.
        """
        if not preference.user_id:
            raise InvalidPreferenceError("User preferences need a user_id")
        validate_preference(preference)

        async with self._locks.hold(preference.key):
            existing = await self.repository.get(preference.key)
            now = self._clock()
            stored = replace(
                preference,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            await self.repository.put(stored)

        logger.info(
            "Preference %s for user %s (%s/%s)",
            "updated" if existing else "created",
            preference.user_id,
            preference.notification_type.value,
            preference.template_type or "*",
        )
        return stored

    async def bulk_upsert(
        self, preferences: list[NotificationPreference]
    ) -> list[PreferenceWriteResult]:
        """Apply each entry independently; one failure never blocks the rest."""
        results: list[PreferenceWriteResult] = []
        for preference in preferences:
            try:
                stored = await self.upsert(preference)
            except Exception as e:
                if isinstance(e, NotificationError):
                    logger.warning(
                        "Bulk preference update rejected for user %s type %s: %s",
                        preference.user_id,
                        preference.notification_type.value,
                        e,
                    )
                else:
                    logger.error(
                        "Bulk preference update failed for user %s type %s",
                        preference.user_id,
                        preference.notification_type.value,
                        exc_info=True,
                    )
                results.append(
                    PreferenceWriteResult(
                        notification_type=preference.notification_type,
                        template_type=preference.template_type,
                        success=False,
                        error=str(e),
                    )
                )
            else:
                results.append(
                    PreferenceWriteResult(
                        notification_type=preference.notification_type,
                        template_type=preference.template_type,
                        success=True,
                        preference=stored,
                    )
                )
        return results

    async def set_tenant_default(
        self, tenant_id: str, preference: NotificationPreference
    ) -> NotificationPreference:
        """Create or replace the tenant default for the preference's type."""
        validate_preference(preference)
        now = self._clock()
        record = replace(
            preference,
            user_id=None,
            template_type=None,
            tenant_id=tenant_id,
            created_at=preference.created_at or now,
            updated_at=now,
        )
        async with self._locks.hold(("tenant", tenant_id, record.notification_type)):
            await self.repository.put_tenant_default(tenant_id, record)
        logger.info(
            "Tenant default set for %s (%s)", tenant_id, record.notification_type.value
        )
        return record

    async def get(
        self,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None = None,
    ) -> NotificationPreference:
        """Return an explicit record.

        Raises:
            PreferenceNotFoundError: If the user has no such record.
        """
        preference = await self.repository.get((user_id, notification_type, template_type))
        if preference is None:
            raise PreferenceNotFoundError(
                f"No preference for user {user_id} and type {notification_type.value}"
                + (f" (template {template_type})" if template_type else "")
            )
        return preference

    async def list_for_user(
        self,
        user_id: str,
        notification_type: NotificationType | None = None,
    ) -> list[NotificationPreference]:
        preferences = await self.repository.list_for_user(user_id, notification_type)
        return sorted(
            preferences,
            key=lambda p: (p.notification_type.value, p.template_type or ""),
        )

    async def delete(
        self,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None = None,
    ) -> None:
        """Delete one explicit record.

        Raises:
            PreferenceNotFoundError: If the user has no such record.
        """
        key = (user_id, notification_type, template_type)
        async with self._locks.hold(key):
            deleted = await self.repository.delete(key)
        if not deleted:
            raise PreferenceNotFoundError(
                f"No preference for user {user_id} and type {notification_type.value}"
            )
        logger.info("Preference deleted for user %s (%s)", user_id, notification_type.value)

    async def reset_to_defaults(self, user_id: str) -> int:
        """Remove every explicit record of a user.

        Resolution afterwards falls back to tenant and global defaults.

        Returns:
            Number of records removed.
        """
        removed = 0
        for preference in await self.repository.list_for_user(user_id):
            async with self._locks.hold(preference.key):
                if await self.repository.delete(preference.key):
                    removed += 1
        logger.info("Reset %d preferences to defaults for user %s", removed, user_id)
        return removed

    async def summary(self, tenant_id: str) -> PreferenceSummary:
        """Summarize the explicit records of a tenant."""
        preferences = await self.repository.list_for_tenant(tenant_id)
        enabled: Counter[str] = Counter()
        disabled: Counter[str] = Counter()
        channels: Counter[str] = Counter()
        frequencies: Counter[str] = Counter()
        quiet = 0

        for p in preferences:
            if p.is_enabled:
                enabled[p.notification_type.value] += 1
            else:
                disabled[p.notification_type.value] += 1
            for channel in p.delivery_channels:
                channels[channel.value] += 1
            frequencies[p.frequency.value] += 1
            if p.has_quiet_hours:
                quiet += 1

        return PreferenceSummary(
            tenant_id=tenant_id,
            total=len(preferences),
            enabled_by_type=dict(enabled),
            disabled_by_type=dict(disabled),
            channel_usage=dict(channels),
            frequency_distribution=dict(frequencies),
            with_quiet_hours=quiet,
        )
