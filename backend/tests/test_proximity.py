"""Incident proximity alert tests."""

import asyncio
import math
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from famguard.core.timeutils import utcnow
from famguard.models import FamilyMember, Notification, ProximityNotification, PushToken
from famguard.services.backend import (
    BackendError,
    ProximityMatch,
    ProximityNotificationRecord,
    SafetyBackend,
)
from famguard.services.proximity_service import (
    AlertLevel,
    ProximityAlertEngine,
    classify_severity,
    compose_message,
)
from famguard.services.push_service import PushDeliveryError, PushResult

KM_PER_DEGREE_LAT = 6371.0 * math.pi / 180
HOME = (6.5, 3.4)


class RecordingPushClient:
    """Stands in for the Expo client; fails for tokens listed in `failing`."""

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    async def send(self, tokens, title, body, data):
        if self.failing.intersection(tokens):
            raise PushDeliveryError("push provider unreachable")
        self.sent.append({"tokens": list(tokens), "title": title, "body": body, "data": data})
        return PushResult(sent=len(tokens), total=len(tokens))


@pytest.fixture
def push():
    return RecordingPushClient()


@pytest.fixture
def engine_backend(session_factory, push):
    return SafetyBackend(session_factory, push_client=push)


def add_user(session_factory, user_id, lat=HOME[0], lon=HOME[1], token=True):
    with session_factory() as db:
        db.add(
            FamilyMember(
                family_group_id="g1",
                user_id=user_id,
                location_latitude=lat,
                location_longitude=lon,
                share_location=True,
                last_seen=utcnow(),
            )
        )
        if token:
            db.add(PushToken(user_id=user_id, token=f"ExponentPushToken[{user_id}]"))
        db.commit()


def add_incident(backend, km_north, title="Robbery at junction", category="crime"):
    lat = HOME[0] + km_north / KM_PER_DEGREE_LAT
    return asyncio.run(backend.create_incident(category=category, title=title, latitude=lat, longitude=HOME[1]))


def count(session_factory, model, **where):
    with session_factory() as db:
        stmt = select(func.count()).select_from(model)
        for column, value in where.items():
            stmt = stmt.where(getattr(model, column) == value)
        return db.execute(stmt).scalar_one()


def make_match(incident_id="i1", distance_km=1.0, title="Fire", category="fire", created_at=None):
    return ProximityMatch(
        user_id="u1",
        incident_id=incident_id,
        incident_title=title,
        incident_category=category,
        user_latitude=HOME[0],
        user_longitude=HOME[1],
        incident_latitude=HOME[0],
        incident_longitude=HOME[1],
        distance_km=distance_km,
        incident_created_at=created_at or datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize(
    "distance, level",
    [
        (0.0, AlertLevel.DANGER),
        (3.0, AlertLevel.DANGER),
        (3.0001, AlertLevel.WARNING),
        (6.0, AlertLevel.WARNING),
        (6.0001, AlertLevel.ALERT),
        (10.0, AlertLevel.ALERT),
    ],
)
def test_severity_tiers(distance, level):
    assert classify_severity(distance) is level


def test_single_incident_message():
    message = compose_message([make_match(distance_km=2.46, title="Building fire", category="fire")])

    assert message.level is AlertLevel.DANGER
    assert message.title == "🚨 DANGER: Incident Nearby"
    assert message.body == "fire: Building fire\n📍 2.5km away - DANGER"


def test_multiple_incident_message_names_closest():
    matches = [
        make_match("far", distance_km=5.2, title="Protest", category="unrest"),
        make_match("near", distance_km=4.1, title="Armed robbery", category="crime"),
        make_match("farthest", distance_km=8.0, title="Flooding", category="weather"),
    ]

    message = compose_message(matches)

    assert message.primary.incident_id == "near"
    assert message.level is AlertLevel.WARNING
    assert message.title == "⚠️ WARNING: Incident Nearby"
    assert message.body.startswith("3 incidents nearby:\n• crime: Armed robbery\n📍 4.1km away - WARNING")
    assert message.body.endswith("+ 2 more incident(s)")


def test_equal_distance_prefers_most_recent():
    older = make_match("old", distance_km=2.0, created_at=datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc))
    newer = make_match("new", distance_km=2.0, created_at=datetime(2026, 10, 19, 8, 45, tzinfo=timezone.utc))

    assert compose_message([older, newer]).primary.incident_id == "new"


def test_two_incidents_one_user_sends_single_push(engine_backend, session_factory, push):
    add_user(session_factory, "u1")
    near = add_incident(engine_backend, 2.0, title="Armed robbery")
    add_incident(engine_backend, 5.0, title="Road block")
    engine = ProximityAlertEngine(engine_backend)

    result = asyncio.run(engine.check_and_notify())

    assert result.users == 1
    assert result.successful == 1
    assert len(push.sent) == 1
    sent = push.sent[0]
    assert sent["title"].startswith("🚨 DANGER")
    assert sent["body"].startswith("2 incidents nearby:")
    assert sent["data"]["primaryIncidentId"] == near.id
    assert sent["data"]["alertLevel"] == "danger"
    assert len(sent["data"]["incidentIds"]) == 2
    assert count(session_factory, ProximityNotification, user_id="u1") == 2
    assert count(session_factory, Notification, user_id="u1", type="incident_proximity") == 1


def test_incident_beyond_window_is_ignored(engine_backend, session_factory, push):
    add_user(session_factory, "u1")
    add_incident(engine_backend, 12.0)

    result = asyncio.run(ProximityAlertEngine(engine_backend).check_and_notify())

    assert result.users == 0
    assert push.sent == []
    assert count(session_factory, Notification) == 0


def test_user_notified_today_gets_in_app_only(engine_backend, session_factory, push):
    add_user(session_factory, "u1")
    earlier = add_incident(engine_backend, 1.0, title="Earlier incident")
    asyncio.run(
        engine_backend.insert_proximity_notification_records(
            [ProximityNotificationRecord("u1", earlier.id, 1.0, utcnow())]
        )
    )
    fresh = add_incident(engine_backend, 3.5, title="New incident")

    result = asyncio.run(ProximityAlertEngine(engine_backend).check_and_notify())

    assert result.suppressed == 1
    assert push.sent == []
    assert count(session_factory, ProximityNotification, user_id="u1", incident_id=fresh.id) == 1
    assert count(session_factory, Notification, user_id="u1") == 1


def test_second_sweep_does_not_repeat_same_incident(engine_backend, session_factory, push):
    add_user(session_factory, "u1")
    add_incident(engine_backend, 1.0)
    engine = ProximityAlertEngine(engine_backend)

    asyncio.run(engine.check_and_notify())
    second = asyncio.run(engine.check_and_notify())

    assert second.users == 0
    assert len(push.sent) == 1


def test_duplicate_dedup_record_leaves_one_row(backend, session_factory):
    record = ProximityNotificationRecord("u1", "i1", 2.0, utcnow())

    first = asyncio.run(backend.insert_proximity_notification_records([record]))
    second = asyncio.run(backend.insert_proximity_notification_records([record, record]))

    assert (first, second) == (1, 0)
    assert count(session_factory, ProximityNotification) == 1


def test_one_user_failure_does_not_abort_others(session_factory):
    push = RecordingPushClient(failing={"ExponentPushToken[bad]"})
    backend = SafetyBackend(session_factory, push_client=push)
    add_user(session_factory, "good")
    add_user(session_factory, "bad")
    add_incident(backend, 2.0)

    result = asyncio.run(ProximityAlertEngine(backend).check_and_notify())

    assert (result.users, result.successful, result.failed) == (2, 1, 1)
    assert [s["tokens"] for s in push.sent] == [["ExponentPushToken[good]"]]
    # Failed user keeps no dedup rows, so the next sweep retries
    assert count(session_factory, ProximityNotification, user_id="bad") == 0
    assert count(session_factory, ProximityNotification, user_id="good") == 1


class FlakyLookupBackend(SafetyBackend):
    async def has_been_notified_today(self, user_id):
        raise BackendError("statement timeout")


def test_notified_today_lookup_failure_still_alerts(session_factory, push):
    backend = FlakyLookupBackend(session_factory, push_client=push)
    add_user(session_factory, "u1")
    add_incident(backend, 2.0)

    result = asyncio.run(ProximityAlertEngine(backend).check_and_notify())

    assert result.pushed == 1
    assert len(push.sent) == 1


class GatedBackend(SafetyBackend):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()
        self.queries = 0

    async def query_proximity_matches(self, min_km, max_km, max_age_hours):
        self.queries += 1
        await self.gate.wait()
        return await super().query_proximity_matches(min_km, max_km, max_age_hours)


def test_trigger_during_sweep_is_dropped(session_factory, push):
    backend = GatedBackend(session_factory, push_client=push)
    add_user(session_factory, "u1")
    add_incident(backend, 2.0)
    engine = ProximityAlertEngine(backend)

    async def scenario():
        running = asyncio.create_task(engine.check_and_notify())
        await asyncio.sleep(0)
        assert engine.is_checking is True
        dropped = await engine.trigger_check()
        backend.gate.set()
        return await running, dropped

    first, dropped = asyncio.run(scenario())

    assert dropped is None
    assert first.pushed == 1
    assert backend.queries == 1
    assert len(push.sent) == 1
    assert engine.is_checking is False


def test_empty_sweep_has_no_side_effects(engine_backend, session_factory, push):
    result = asyncio.run(ProximityAlertEngine(engine_backend).check_and_notify())

    assert result.users == 0
    assert push.sent == []
    assert count(session_factory, ProximityNotification) == 0


def test_periodic_checking_runs_and_stops(engine_backend, session_factory, push):
    add_user(session_factory, "u1")
    add_incident(engine_backend, 2.0)
    engine = ProximityAlertEngine(engine_backend, check_interval_seconds=3600, initial_delay_seconds=0)

    async def scenario():
        engine.start_periodic_checking()
        engine.start_periodic_checking()
        for _ in range(200):
            if push.sent:
                break
            await asyncio.sleep(0.01)
        running = engine.is_running
        engine.stop_periodic_checking()
        engine.stop_periodic_checking()
        return running

    assert asyncio.run(scenario()) is True
    assert engine.is_running is False
    assert len(push.sent) == 1


def test_push_reaching_no_device_is_tallied_as_undelivered(engine_backend, session_factory, push):
    add_user(session_factory, "tokenless", token=False)
    add_incident(engine_backend, 2.0)

    result = asyncio.run(ProximityAlertEngine(engine_backend).check_and_notify())

    assert (result.successful, result.pushed, result.undelivered) == (1, 0, 1)
    # In-app and dedup rows are still written
    assert count(session_factory, Notification, user_id="tokenless") == 1
    assert count(session_factory, ProximityNotification, user_id="tokenless") == 1
