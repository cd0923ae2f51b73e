# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Quiet-hours windows and timezone resolution.

A window is a half-open range of local wall-clock times ``[start, end)``.
When ``start > end`` the window wraps past midnight. A window whose start
equals its end is empty.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notifyhub.core.notifications.exceptions import InvalidPreferenceError
from notifyhub.utils.datetime import at_local

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def parse_hhmm(value: str) -> time:
    """Parse an ``HH:mm`` string into a time.

    Raises:
        InvalidPreferenceError: If the value is not a valid 24h time.
    """
    match = _HHMM.match(value or "")
    if not match:
        raise InvalidPreferenceError(f"Quiet hours must be in HH:mm format, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


@dataclass(frozen=True)
class QuietHours:
    """A daily quiet window in local time."""

    start: time
    end: time

    @classmethod
    def from_strings(cls, start: str | None, end: str | None) -> "QuietHours | None":
        """Build a window from preference fields.

        Returns None unless both ends are set. A half-configured window is
        rejected.
        """
        if not start and not end:
            return None
        if not start or not end:
            raise InvalidPreferenceError(
                "Quiet hours need both a start and an end time"
            )
        return cls(parse_hhmm(start), parse_hhmm(end))

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    @property
    def wraps_midnight(self) -> bool:
        return self.start > self.end

    def contains(self, local_time: time) -> bool:
        """Check whether a local wall-clock time falls inside the window."""
        if self.is_empty:
            return False
        t = local_time.replace(tzinfo=None)
        if self.wraps_midnight:
            return t >= self.start or t < self.end
        return self.start <= t < self.end

    def contains_instant(self, moment: datetime, zone: ZoneInfo) -> bool:
        return self.contains(moment.astimezone(zone).time())

    def next_end(self, moment: datetime, zone: ZoneInfo) -> datetime:
        """Return the next local occurrence of the window end, in UTC.

        Args:
            moment: Aware instant, normally one inside the window.
            zone: Zone the window is expressed in.

        Returns:
            First instant strictly after ``moment`` whose local time is
            ``end``.
        """
        day = moment.astimezone(zone).date()
        candidate = at_local(day, self.end, zone)
        if candidate <= moment:
            candidate = at_local(day + timedelta(days=1), self.end, zone)
        return candidate


def resolve_zone(name: str | None, default: str) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to ``default``.

    Unknown names are logged and replaced rather than failing the request.
    """
    if not name:
        return ZoneInfo(default)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown timezone %r, falling back to %s", name, default
        )
        return ZoneInfo(default)
