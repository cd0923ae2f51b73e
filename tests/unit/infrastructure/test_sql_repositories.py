# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the SQLAlchemy repositories on in-memory SQLite."""

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from notifyhub.core.notifications import (
    Channel,
    DeliveryStatus,
    Frequency,
    InstanceFilter,
    InvalidTransitionError,
    NotificationEngine,
    NotificationInstance,
    NotificationPreference,
    NotificationType,
    PreferenceStore,
    Recipient,
    StoredState,
    TransportOutcome,
)
from notifyhub.infrastructure.database import (
    DatabaseError,
    SqlAlchemyInstanceRepository,
    SqlAlchemyPreferenceRepository,
    create_schema,
    create_sessionmaker,
    session_scope,
)

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def sessionmaker() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_schema(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def preferences(sessionmaker) -> SqlAlchemyPreferenceRepository:
    return SqlAlchemyPreferenceRepository(sessionmaker)


@pytest.fixture
def instances(sessionmaker) -> SqlAlchemyInstanceRepository:
    return SqlAlchemyInstanceRepository(sessionmaker)


def _instance(instance_id: str, created_at: datetime = NOW, **overrides) -> NotificationInstance:
    values = {
        "id": instance_id,
        "tenant_id": "t-1",
        "user_id": "u-1",
        "notification_type": NotificationType.ANNOUNCEMENT,
        "content": "Library closed on Monday",
        "recipient": Recipient(user_id="u-1", email="u1@school.example"),
        "created_at": created_at,
    }
    values.update(overrides)
    return NotificationInstance(**values)


class TestSessionScope:
    """Tests for the transactional session helper."""

    @pytest.mark.asyncio
    async def test_sqlalchemy_errors_are_wrapped(self, instances):
        await instances.add(_instance("n-1"))

        with pytest.raises(DatabaseError, match="Database operation failed"):
            await instances.add(_instance("n-1"))

    @pytest.mark.asyncio
    async def test_other_errors_roll_back_and_propagate(self, sessionmaker, instances):
        from notifyhub.infrastructure.database.models import NotificationModel

        with pytest.raises(KeyError):
            async with session_scope(sessionmaker) as session:
                session.add(
                    NotificationModel(
                        id="n-9",
                        tenant_id="t-1",
                        user_id="u-1",
                        notification_type="grade",
                        status="pending",
                        content="x",
                        recipient={"user_id": "u-1"},
                        created_at=NOW,
                    )
                )
                raise KeyError("boom")

        assert await instances.get("n-9") is None


class TestSqlAlchemyPreferenceRepository:
    """Tests for SqlAlchemyPreferenceRepository."""

    @pytest.mark.asyncio
    async def test_round_trip(self, preferences):
        await preferences.put(
            NotificationPreference(
                user_id="u-1",
                tenant_id="t-1",
                notification_type=NotificationType.GRADE,
                delivery_channels=frozenset({Channel.EMAIL, Channel.PUSH}),
                quiet_hours_start="22:00",
                quiet_hours_end="07:00",
                timezone="Europe/Istanbul",
                frequency=Frequency.DAILY_DIGEST,
                metadata={"source": "settings-page"},
            )
        )

        stored = await preferences.get(("u-1", NotificationType.GRADE, None))

        assert stored.delivery_channels == frozenset({Channel.EMAIL, Channel.PUSH})
        assert stored.template_type is None
        assert stored.frequency is Frequency.DAILY_DIGEST
        assert stored.timezone == "Europe/Istanbul"
        assert stored.metadata == {"source": "settings-page"}
        assert stored.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_template_records_are_separate(self, preferences):
        await preferences.put(
            NotificationPreference(user_id="u-1", notification_type=NotificationType.GRADE)
        )
        await preferences.put(
            NotificationPreference(
                user_id="u-1",
                notification_type=NotificationType.GRADE,
                template_type="final_exam",
                is_enabled=False,
            )
        )

        type_wide = await preferences.get(("u-1", NotificationType.GRADE, None))
        template = await preferences.get(("u-1", NotificationType.GRADE, "final_exam"))

        assert type_wide.is_enabled is True
        assert template.is_enabled is False
        assert len(await preferences.list_for_user("u-1")) == 2

    @pytest.mark.asyncio
    async def test_put_updates_in_place(self, preferences):
        key = ("u-1", NotificationType.MESSAGE, None)
        await preferences.put(
            NotificationPreference(user_id="u-1", notification_type=NotificationType.MESSAGE)
        )
        await preferences.put(
            NotificationPreference(
                user_id="u-1",
                notification_type=NotificationType.MESSAGE,
                delivery_channels=frozenset({Channel.IN_APP}),
            )
        )

        assert (await preferences.get(key)).delivery_channels == frozenset({Channel.IN_APP})
        assert len(await preferences.list_for_user("u-1", NotificationType.MESSAGE)) == 1

    @pytest.mark.asyncio
    async def test_delete(self, preferences):
        for notification_type in (NotificationType.GRADE, NotificationType.SYSTEM):
            await preferences.put(
                NotificationPreference(user_id="u-1", notification_type=notification_type)
            )

        assert await preferences.delete(("u-1", NotificationType.GRADE, None)) is True
        assert await preferences.delete(("u-1", NotificationType.GRADE, None)) is False
        assert [p.notification_type for p in await preferences.list_for_user("u-1")] == [
            NotificationType.SYSTEM
        ]

    @pytest.mark.asyncio
    async def test_list_for_tenant(self, preferences):
        await preferences.put(
            NotificationPreference(
                user_id="u-1", tenant_id="t-1", notification_type=NotificationType.GRADE
            )
        )
        await preferences.put(
            NotificationPreference(
                user_id="u-2", tenant_id="t-2", notification_type=NotificationType.GRADE
            )
        )

        listed = await preferences.list_for_tenant("t-1")

        assert [p.user_id for p in listed] == ["u-1"]

    @pytest.mark.asyncio
    async def test_tenant_default(self, preferences):
        assert await preferences.get_tenant_default("t-1", NotificationType.BILLING) is None

        for channels in ({Channel.EMAIL}, {Channel.EMAIL, Channel.SMS}):
            await preferences.put_tenant_default(
                "t-1",
                NotificationPreference(
                    user_id=None,
                    notification_type=NotificationType.BILLING,
                    delivery_channels=frozenset(channels),
                ),
            )

        stored = await preferences.get_tenant_default("t-1", NotificationType.BILLING)

        assert stored.user_id is None
        assert stored.tenant_id == "t-1"
        assert stored.delivery_channels == frozenset({Channel.EMAIL, Channel.SMS})
        assert await preferences.get_tenant_default("t-2", NotificationType.BILLING) is None


class TestSqlAlchemyInstanceRepository:
    """Tests for SqlAlchemyInstanceRepository."""

    @pytest.mark.asyncio
    async def test_get_missing(self, instances):
        assert await instances.get("nope") is None
        assert await instances.get_many([]) == []

    @pytest.mark.asyncio
    async def test_save_if_replaces_row_in_expected_state(self, instances):
        instance = _instance(
            "n-1", status=DeliveryStatus.SCHEDULED, allowed_channels=[Channel.PUSH, Channel.EMAIL]
        )
        await instances.add(instance)
        expected = StoredState.of(instance)

        instance.status = DeliveryStatus.SENT
        instance.channel = Channel.PUSH
        instance.sent_at = NOW
        assert await instances.save_if(instance, expected) is True
        stored = await instances.get("n-1")

        assert stored.status is DeliveryStatus.SENT
        assert stored.channel is Channel.PUSH
        assert stored.allowed_channels == [Channel.PUSH, Channel.EMAIL]
        assert stored.sent_at == NOW
        assert stored.recipient.email == "u1@school.example"

    @pytest.mark.asyncio
    async def test_save_if_refuses_stale_state(self, instances):
        instance = _instance("n-1", status=DeliveryStatus.SCHEDULED)
        await instances.add(instance)
        loaded = StoredState.of(instance)

        instance.status = DeliveryStatus.SENT
        assert await instances.save_if(instance, loaded) is True

        instance.status = DeliveryStatus.SUPPRESSED
        instance.failure_reason = "cancelled"
        assert await instances.save_if(instance, loaded) is False
        assert (await instances.get("n-1")).status is DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_save_if_checks_retry_count(self, instances):
        await instances.add(_instance("n-1", status=DeliveryStatus.SCHEDULED, retry_count=2))
        instance = await instances.get("n-1")

        instance.status = DeliveryStatus.SENT
        stale = StoredState(DeliveryStatus.SCHEDULED, 1)

        assert await instances.save_if(instance, stale) is False
        assert await instances.save_if(instance, StoredState.of(await instances.get("n-1")))

    @pytest.mark.asyncio
    async def test_save_many_if_writes_only_unmoved_rows(self, instances):
        for instance_id in ("n-1", "n-2"):
            await instances.add(_instance(instance_id, status=DeliveryStatus.SCHEDULED))
        scheduled = StoredState(DeliveryStatus.SCHEDULED, 0)

        cancelled = await instances.get("n-2")
        cancelled.status = DeliveryStatus.SUPPRESSED
        await instances.save_if(cancelled, scheduled)

        members = await instances.get_many(["n-1", "n-2"])
        for member in members:
            member.status = DeliveryStatus.SENT
        written = await instances.save_many_if([(m, scheduled) for m in members])

        assert written == {"n-1"}
        assert (await instances.get("n-1")).status is DeliveryStatus.SENT
        assert (await instances.get("n-2")).status is DeliveryStatus.SUPPRESSED

    @pytest.mark.asyncio
    async def test_get_many(self, instances):
        for instance_id in ("n-1", "n-2", "n-3"):
            await instances.add(_instance(instance_id))

        found = await instances.get_many(["n-1", "n-3", "missing"])

        assert sorted(i.id for i in found) == ["n-1", "n-3"]

    @pytest.mark.asyncio
    async def test_find_orders_newest_first_and_pages(self, instances):
        for n in range(4):
            await instances.add(_instance(f"n-{n}", created_at=NOW + timedelta(minutes=n)))

        page, total = await instances.find(InstanceFilter(tenant_id="t-1"), offset=1, limit=2)
        _, count_only = await instances.find(InstanceFilter(tenant_id="t-1"), limit=0)

        assert total == 4
        assert [i.id for i in page] == ["n-2", "n-1"]
        assert count_only == 4

    @pytest.mark.asyncio
    async def test_find_filters(self, instances):
        await instances.add(_instance("n-1", subject="Field Trip form"))
        await instances.add(
            _instance("n-2", notification_type=NotificationType.GRADE, status=DeliveryStatus.SENT)
        )
        await instances.add(_instance("n-3", tenant_id="t-2", subject="Field trip"))
        await instances.add(_instance("n-4", created_at=NOW - timedelta(days=3)))

        by_search, _ = await instances.find(InstanceFilter(tenant_id="t-1", search="field trip"))
        by_status, _ = await instances.find(
            InstanceFilter(tenant_id="t-1", status=DeliveryStatus.SENT)
        )
        by_range, _ = await instances.find(
            InstanceFilter(tenant_id="t-1", created_from=NOW - timedelta(days=1))
        )

        assert [i.id for i in by_search] == ["n-1"]
        assert [i.id for i in by_status] == ["n-2"]
        assert sorted(i.id for i in by_range) == ["n-1", "n-2"]

    @pytest.mark.asyncio
    async def test_list_due_skips_buckets_and_future(self, instances):
        for instance in [
            _instance(
                "due-late",
                status=DeliveryStatus.SCHEDULED,
                scheduled_for=NOW - timedelta(minutes=1),
            ),
            _instance(
                "due-early",
                status=DeliveryStatus.SCHEDULED,
                scheduled_for=NOW - timedelta(hours=1),
            ),
            _instance(
                "future",
                status=DeliveryStatus.SCHEDULED,
                scheduled_for=NOW + timedelta(hours=1),
            ),
            _instance(
                "bucketed",
                status=DeliveryStatus.SCHEDULED,
                scheduled_for=NOW - timedelta(hours=2),
                digest_bucket="u-1|announcement|2025-01-06",
            ),
            _instance("sent", status=DeliveryStatus.SENT),
        ]:
            await instances.add(instance)

        due = await instances.list_due(NOW, limit=10)
        limited = await instances.list_due(NOW, limit=1)

        assert [i.id for i in due] == ["due-early", "due-late"]
        assert [i.id for i in limited] == ["due-early"]


class TestEngineOnSql:
    """The engine running on the SQL repositories."""

    @pytest.fixture
    def sql_engine(self, preferences, instances, transport, event_bus, clock):
        return NotificationEngine(
            PreferenceStore(preferences, clock=clock),
            instances,
            transport,
            event_bus=event_bus,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_delivery_history_survives_storage(self, sql_engine, make_request):
        instance_id = await sql_engine.submit(make_request())
        await sql_engine.report_outcome(instance_id, TransportOutcome.DELIVERED)
        await sql_engine.report_read(instance_id)

        stored = await sql_engine.get_instance(instance_id)

        assert stored.status is DeliveryStatus.READ
        assert [c.to_status for c in stored.status_log] == [
            DeliveryStatus.SCHEDULED,
            DeliveryStatus.SENT,
            DeliveryStatus.DELIVERED,
            DeliveryStatus.READ,
        ]
        assert stored.status_log[0].at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_future_request_dispatched_when_due(
        self, sql_engine, clock, transport, make_request
    ):
        instance_id = await sql_engine.submit(
            make_request(scheduled_for=clock.now + timedelta(hours=2))
        )
        assert (await sql_engine.get_instance(instance_id)).status is DeliveryStatus.SCHEDULED

        clock.advance(hours=3)

        assert await sql_engine.dispatch_due() == 1
        assert (await sql_engine.get_instance(instance_id)).status is DeliveryStatus.SENT
        assert [e.instance_ids for e in transport.events] == [[instance_id]]


class TestEnginesSharingDatabase:
    """Several engines, each with its own locks, on one database."""

    @pytest_asyncio.fixture
    async def file_sessionmaker(
        self, tmp_path
    ) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notifyhub.db'}")
        await create_schema(engine)
        yield create_sessionmaker(engine)
        await engine.dispose()

    @pytest.fixture
    def make_engine(self, file_sessionmaker, transport, event_bus, clock):
        def _make() -> NotificationEngine:
            return NotificationEngine(
                PreferenceStore(SqlAlchemyPreferenceRepository(file_sessionmaker), clock=clock),
                SqlAlchemyInstanceRepository(file_sessionmaker),
                transport,
                event_bus=event_bus,
                clock=clock,
            )

        return _make

    @pytest.mark.asyncio
    async def test_overlapping_sweeps_hand_off_once(
        self, make_engine, clock, transport, make_request
    ):
        api = make_engine()
        instance_id = await api.submit(make_request(scheduled_for=clock.now + timedelta(minutes=5)))
        clock.advance(minutes=10)

        results = await asyncio.gather(make_engine().dispatch_due(), make_engine().dispatch_due())

        assert sorted(results) == [0, 1]
        assert [e.instance_ids for e in transport.events] == [[instance_id]]
        assert (await api.get_instance(instance_id)).status is DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_dispatch_racing_cancel_has_one_winner(
        self, make_engine, clock, transport, make_request
    ):
        api = make_engine()
        instance_id = await api.submit(make_request(scheduled_for=clock.now + timedelta(minutes=5)))
        clock.advance(minutes=10)

        dispatched, cancelled = await asyncio.gather(
            make_engine().dispatch(instance_id), api.cancel(instance_id), return_exceptions=True
        )

        stored = await api.get_instance(instance_id)
        if dispatched is True:
            assert isinstance(cancelled, InvalidTransitionError)
            assert stored.status is DeliveryStatus.SENT
            assert len(transport.events) == 1
        else:
            assert dispatched is False
            assert stored.status is DeliveryStatus.SUPPRESSED
            assert transport.events == []

    @pytest.mark.asyncio
    async def test_duplicate_outcome_reports_apply_once(self, make_engine, make_request):
        api = make_engine()
        instance_id = await api.submit(make_request())

        results = await asyncio.gather(
            make_engine().report_outcome(instance_id, TransportOutcome.DELIVERED),
            make_engine().report_outcome(instance_id, TransportOutcome.DELIVERED),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidTransitionError)
        stored = await api.get_instance(instance_id)
        assert [c.to_status for c in stored.status_log].count(DeliveryStatus.DELIVERED) == 1
