# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Time helpers shared by the engine, the stores and the history layer.

Every instant the engine stores or compares is an aware UTC datetime.
Recipients' local wall-clock times only appear while quiet hours or digest
periods are evaluated, and ``at_local`` is the one way back from a local
date and time to a UTC instant.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

# Returns the current aware UTC instant; tests inject a fake one.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize to aware UTC.

    Naive values are taken to be UTC already; SQLite hands them back that
    way. None passes through.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def at_local(day: date, wall: time, zone: ZoneInfo) -> datetime:
    """UTC instant at which ``zone`` shows ``wall`` on ``day``.

    Wall times skipped by a DST jump resolve to the instant after the gap.
    """
    return datetime.combine(day, wall, tzinfo=zone).astimezone(timezone.utc)


def days_ago(days: int, now: datetime | None = None) -> datetime:
    return (now or utc_now()) - timedelta(days=days)


def seconds_until(target: datetime, now: datetime | None = None) -> float:
    """Seconds from ``now`` until ``target``, clamped at zero."""
    delta = ensure_utc(target) - (now or utc_now())
    return max(delta.total_seconds(), 0.0)


def format_iso(dt: datetime | None) -> str | None:
    """Serialize for event payloads and JSON columns (UTC, ISO 8601)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def parse_iso(iso_string: str | None) -> datetime | None:
    """Inverse of format_iso; also accepts a trailing ``Z``."""
    if iso_string is None:
        return None
    return ensure_utc(datetime.fromisoformat(iso_string.replace("Z", "+00:00")))
