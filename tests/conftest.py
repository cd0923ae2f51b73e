# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

Engine fixtures run on in-memory repositories with a controllable clock
and a recording transport, so delivery flows are deterministic.
"""

import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest

# Actors are declared against a StubBroker in tests
os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")

from notifyhub.core.config.settings import clear_settings_cache  # noqa: E402
from notifyhub.core.notifications import (  # noqa: E402
    Channel,
    DispatchEvent,
    InMemoryDigestBucketStore,
    InMemoryInstanceRepository,
    InMemoryPreferenceRepository,
    NotificationEngine,
    NotificationPreference,
    NotificationRequest,
    NotificationType,
    PreferenceStore,
    Priority,
    Recipient,
    Transport,
    TransportReceipt,
)
from notifyhub.infrastructure.events import EventBus  # noqa: E402

# Monday 6 January 2025, noon UTC
START = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingTransport(Transport):
    """Records dispatch events and replays scripted results.

    Each entry of ``script`` is consumed by one send(): a TransportReceipt
    is returned, an exception is raised. With an empty script the event
    is accepted and the outcome is left to report_outcome().
    """

    def __init__(self) -> None:
        self.events: list[DispatchEvent] = []
        self.script: list[TransportReceipt | Exception] = []

    async def send(self, event: DispatchEvent) -> TransportReceipt:
        self.events.append(event)
        if not self.script:
            return TransportReceipt()
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_settings() -> Generator[None, None, None]:
    """Drop cached settings so environment patches take effect."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def preference_repo() -> InMemoryPreferenceRepository:
    return InMemoryPreferenceRepository()


@pytest.fixture
def instance_repo() -> InMemoryInstanceRepository:
    return InMemoryInstanceRepository()


@pytest.fixture
def digest_store() -> InMemoryDigestBucketStore:
    return InMemoryDigestBucketStore()


@pytest.fixture
def preference_store(preference_repo, clock) -> PreferenceStore:
    return PreferenceStore(preference_repo, clock=clock)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def engine(preference_store, instance_repo, transport, digest_store, event_bus, clock):
    """Engine without timers; deferred work runs through dispatch_due()."""
    return NotificationEngine(
        preference_store,
        instance_repo,
        transport,
        digest_store,
        event_bus=event_bus,
        clock=clock,
    )


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def sample_tenant_id() -> str:
    return "550e8400-e29b-41d4-a716-446655440000"


@pytest.fixture
def sample_user_id() -> str:
    return "550e8400-e29b-41d4-a716-446655440001"


@pytest.fixture
def recipient(sample_user_id) -> Recipient:
    return Recipient(
        user_id=sample_user_id,
        email="student@school.example",
        phone="+15550100",
        push_token="push-token-1",
        full_name="Ada Student",
    )


@pytest.fixture
def make_request(sample_tenant_id, recipient):
    """Factory for notification requests with sensible defaults."""

    def _make(**overrides) -> NotificationRequest:
        values = {
            "tenant_id": sample_tenant_id,
            "user_id": recipient.user_id,
            "notification_type": NotificationType.ANNOUNCEMENT,
            "content": "School closes early on Friday",
            "recipient": recipient,
            "subject": "Early closing",
            "priority": Priority.NORMAL,
            "requested_channels": [Channel.EMAIL],
        }
        values.update(overrides)
        return NotificationRequest(**values)

    return _make


@pytest.fixture
def make_preference(sample_user_id, sample_tenant_id):
    """Factory for preference records with sensible defaults."""

    def _make(**overrides) -> NotificationPreference:
        values = {
            "user_id": sample_user_id,
            "tenant_id": sample_tenant_id,
            "notification_type": NotificationType.ANNOUNCEMENT,
            "delivery_channels": frozenset({Channel.EMAIL, Channel.PUSH}),
        }
        values.update(overrides)
        return NotificationPreference(**values)

    return _make


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow running")
