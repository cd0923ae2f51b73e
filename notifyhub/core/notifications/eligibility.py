# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Eligibility resolution.

Decides whether a request may be sent, through which channels, and
whether quiet hours defer it. The resolver reads preferences but never
writes anything.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from notifyhub.core.notifications.models import (
    Channel,
    EligibilityDecision,
    NotificationType,
    Priority,
    order_channels,
)
from notifyhub.core.notifications.preferences import PreferenceStore
from notifyhub.core.notifications.quiet_hours import QuietHours, resolve_zone

logger = logging.getLogger(__name__)

REASON_DISABLED = "disabled by user preference"
REASON_NO_CHANNEL = "no allowed channel for this notification"
REASON_QUIET_HOURS = "deferred: quiet hours"


class EligibilityResolver:
    """Evaluates requests against effective preferences.

    Attributes:
        preferences: Store used to resolve the effective preference.
        default_timezone: Zone used when a preference has none or an
            unknown one.
    """

    def __init__(self, preferences: PreferenceStore, default_timezone: str = "UTC") -> None:
        self.preferences = preferences
        self.default_timezone = default_timezone

    async def evaluate(
        self,
        user_id: str,
        notification_type: NotificationType,
        template_type: str | None,
        requested_channels: Iterable[Channel] | None,
        at: datetime,
        priority: Priority = Priority.NORMAL,
        tenant_id: str | None = None,
    ) -> EligibilityDecision:
        """Evaluate one request at instant ``at``.

        Args:
            user_id: Recipient user.
            notification_type: Type of the notification.
            template_type: Template narrowing the preference lookup.
            requested_channels: Channels the caller wants. Empty or None
                accepts any channel the preference allows.
            at: Instant the notification would go out.
            priority: Only URGENT bypasses quiet hours.
            tenant_id: Tenant used for the tenant-default lookup.

        Returns:
            The decision, including the zone it was evaluated in.
        """
        effective = await self.preferences.resolve(
            user_id, notification_type, template_type, tenant_id
        )
        preference = effective.preference
        zone = resolve_zone(preference.timezone, self.default_timezone)
        zone_name = zone.key

        if not preference.is_enabled:
            return EligibilityDecision(
                should_send=False,
                allowed_channels=(),
                reason=REASON_DISABLED,
                effective=effective,
                zone_name=zone_name,
            )

        requested = set(requested_channels or ())
        candidates = set(preference.delivery_channels)
        if requested:
            candidates &= requested
        allowed = tuple(order_channels(candidates))

        if not allowed:
            return EligibilityDecision(
                should_send=False,
                allowed_channels=(),
                reason=REASON_NO_CHANNEL,
                effective=effective,
                zone_name=zone_name,
            )

        window = QuietHours.from_strings(preference.quiet_hours_start, preference.quiet_hours_end)
        if window is not None and priority is not Priority.URGENT:
            if window.contains_instant(at, zone):
                logger.debug(
                    "User %s in quiet hours (%s) at %s, deferring",
                    user_id,
                    zone_name,
                    at.isoformat(),
                )
                return EligibilityDecision(
                    should_send=True,
                    allowed_channels=allowed,
                    reason=REASON_QUIET_HOURS,
                    effective=effective,
                    zone_name=zone_name,
                    deferred=True,
                )

        return EligibilityDecision(
            should_send=True,
            allowed_channels=allowed,
            reason=None,
            effective=effective,
            zone_name=zone_name,
        )
