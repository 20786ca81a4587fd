"""Travel advisory and route risk sync tests."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from famguard.core.timeutils import utcnow
from famguard.models import Connection, Notification, PushToken
from famguard.services.backend import SafetyBackend
from famguard.services.push_service import PushResult
from famguard.services.travel_advisory_sync import (
    TravelAdvisorySync,
    risk_level_label,
    route_risk_level,
)


class RecordingPushClient:
    def __init__(self):
        self.sent = []

    async def send(self, tokens, title, body, data):
        self.sent.append({"tokens": sorted(tokens), "title": title, "data": data})
        return PushResult(sent=len(tokens), total=len(tokens))


@pytest.fixture
def push():
    return RecordingPushClient()


@pytest.fixture
def viewer_backend(session_factory, push):
    """Viewer `me` connected to `a` and `b`, each with a device."""
    with session_factory() as db:
        db.add(Connection(user_id="me", connected_user_id="a", status="connected"))
        db.add(Connection(user_id="b", connected_user_id="me", status="connected"))
        db.add(PushToken(user_id="a", token="ExponentPushToken[a]"))
        db.add(PushToken(user_id="b", token="ExponentPushToken[b]"))
        db.commit()
    return SafetyBackend(session_factory, push_client=push)


def notifications(session_factory, type):
    with session_factory() as db:
        rows = db.execute(select(Notification).where(Notification.type == type)).scalars()
        return sorted(n.user_id for n in rows)


def advisory(author, risk_level="high", **overrides):
    fields = {
        "state": "Lagos",
        "region": "Ikeja",
        "risk_level": risk_level,
        "advisory_type": "security",
        "title": "Road closures after protests",
        "created_by_user_id": author,
    }
    fields.update(overrides)
    return fields


@pytest.mark.parametrize("score, level", [(0, "moderate"), (39, "moderate"), (40, "high"), (69, "high"), (70, "critical")])
def test_route_risk_level(score, level):
    assert route_risk_level(score) == level


def test_risk_level_label():
    assert risk_level_label("critical") == "Critical Risk"
    assert risk_level_label("unknown") == "Unknown"


def test_high_risk_advisory_fans_out_once(viewer_backend, session_factory, push):
    sync = TravelAdvisorySync(viewer_backend)

    async def scenario():
        await sync.start("me")
        row = await viewer_backend.create_travel_advisory(**advisory("a"))
        await viewer_backend.update_travel_advisory(row["id"], description="Avoid the Ikeja axis")
        return row

    row = asyncio.run(scenario())

    assert sync.records["a"][row["id"]].description == "Avoid the Ikeja axis"
    assert sync.fanouts == 1
    assert len(push.sent) == 1
    assert push.sent[0]["tokens"] == ["ExponentPushToken[a]", "ExponentPushToken[b]"]
    assert push.sent[0]["title"] == "⚠️ High Risk Travel Advisory"
    assert notifications(session_factory, "travel_advisory") == ["a", "b"]


def test_low_risk_advisory_is_tracked_without_fan_out(viewer_backend, push):
    sync = TravelAdvisorySync(viewer_backend)

    async def scenario():
        await sync.start("me")
        await viewer_backend.create_travel_advisory(**advisory("b", risk_level="low"))

    asyncio.run(scenario())

    assert len(sync.advisories()) == 1
    assert push.sent == []


def test_deactivated_advisory_is_removed(viewer_backend):
    sync = TravelAdvisorySync(viewer_backend)

    async def scenario():
        await sync.start("me")
        row = await viewer_backend.create_travel_advisory(**advisory("a", risk_level="moderate"))
        await viewer_backend.update_travel_advisory(row["id"], is_active=False)

    asyncio.run(scenario())

    assert sync.records == {}


def test_future_advisory_is_not_current(viewer_backend, push):
    sync = TravelAdvisorySync(viewer_backend)

    async def scenario():
        await sync.start("me")
        await viewer_backend.create_travel_advisory(**advisory("a", start_date=utcnow() + timedelta(days=2)))

    asyncio.run(scenario())

    assert sync.records == {}
    assert push.sent == []


def test_advisories_from_self_and_strangers_are_ignored(viewer_backend, push):
    sync = TravelAdvisorySync(viewer_backend)

    async def scenario():
        await sync.start("me")
        await viewer_backend.create_travel_advisory(**advisory("me", risk_level="critical"))
        await viewer_backend.create_travel_advisory(**advisory("stranger", risk_level="critical"))

    asyncio.run(scenario())

    assert sync.records == {}
    assert push.sent == []


def test_route_risk_crossing_fans_out_once_per_crossing(viewer_backend, session_factory, push):
    sync = TravelAdvisorySync(viewer_backend)
    route = {"origin_state": "Lagos", "destination_state": "Oyo", "destination_city": "Ibadan"}

    async def scenario():
        await sync.start("me")
        await viewer_backend.upsert_route_risk("r1", risk_score=30, **route)
        await sync.track_route("r1")
        await viewer_backend.upsert_route_risk("r1", risk_score=45, **route)
        await viewer_backend.upsert_route_risk("r1", risk_score=55, **route)
        await viewer_backend.upsert_route_risk("r1", risk_score=20, **route)
        await viewer_backend.upsert_route_risk("r1", risk_score=75, **route)
        await viewer_backend.upsert_route_risk("other", risk_score=90, origin_state="Kano", destination_state="Kaduna")

    asyncio.run(scenario())

    assert sync.route_risk.risk_score == 75
    assert sync.route_risk.level == "critical"
    assert [p["data"]["riskLevel"] for p in push.sent] == ["high", "critical"]
    assert push.sent[1]["title"] == "🚨 Critical Risk Route"
    assert notifications(session_factory, "route_risk") == ["a", "a", "b", "b"]


def test_tracking_already_high_route_notifies(viewer_backend, push):
    sync = TravelAdvisorySync(viewer_backend)

    async def scenario():
        await sync.start("me")
        await viewer_backend.upsert_route_risk("r1", risk_score=50, origin_state="Lagos", destination_state="Ogun")
        return await sync.track_route("r1")

    snapshot = asyncio.run(scenario())

    assert snapshot.route_info == "Lagos → Ogun"
    assert len(push.sent) == 1


def test_no_connections_means_no_fan_out(session_factory, push):
    backend = SafetyBackend(session_factory, push_client=push)
    sync = TravelAdvisorySync(backend)

    async def scenario():
        await sync.start("loner")
        await backend.upsert_route_risk("r1", risk_score=80, origin_state="Lagos", destination_state="Ogun")
        await sync.track_route("r1")

    asyncio.run(scenario())

    assert sync.is_active is False
    assert push.sent == []
