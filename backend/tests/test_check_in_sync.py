"""Check-in sync tests."""

import asyncio

from famguard.models import Connection
from famguard.services.check_in_sync import CheckInSync


def connect(session_factory, user_id, *others):
    with session_factory() as db:
        for other in others:
            db.add(Connection(user_id=user_id, connected_user_id=other, status="connected"))
        db.commit()


class AlertRecorder:
    def __init__(self):
        self.alerts = []

    async def __call__(self, check_in, transition):
        self.alerts.append((check_in.user_id, transition))


def test_start_loads_check_ins_of_connections(backend, session_factory):
    connect(session_factory, "me", "a", "b")

    async def scenario():
        await backend.create_check_in("a", status="safe", message="at work")
        await backend.create_check_in("stranger", status="unsafe")
        sync = CheckInSync(backend)
        await sync.start("me")
        return sync

    sync = asyncio.run(scenario())

    assert sync.connection_ids == frozenset({"a", "b"})
    assert set(sync.records) == {"a"}
    assert sync.records["a"].message == "at work"


def test_connection_check_in_is_merged_live(backend):
    sync = CheckInSync(backend)

    async def scenario():
        await sync.start("me", ["a"])
        await backend.create_check_in("a", status="safe", message="landed")
        await backend.create_check_in("stranger", status="safe")

    asyncio.run(scenario())

    assert set(sync.records) == {"a"}
    assert sync.records["a"].status == "safe"
    assert sync.alerts_fired == 0


def test_emergency_check_in_alerts_once(backend):
    recorder = AlertRecorder()
    sync = CheckInSync(backend, on_alert=recorder)

    async def scenario():
        await sync.start("me", ["a"])
        row = await backend.create_check_in("a", status="unsafe", is_emergency=True, message="help")
        # Same state re-published: no new transition
        await backend.update_check_in_status(row["id"], "unsafe")
        return row

    row = asyncio.run(scenario())

    assert recorder.alerts == [("a", "emergency")]
    assert sync.records["a"].id == row["id"]
    assert sync.records["a"].needs_attention is True


def test_missed_transition_alerts_once_per_check_in(backend):
    recorder = AlertRecorder()
    sync = CheckInSync(backend, on_alert=recorder)

    async def scenario():
        await sync.start("me", ["a"])
        row = await backend.create_check_in("a", status="safe")
        await backend.update_check_in_status(row["id"], "missed")
        await backend.update_check_in_status(row["id"], "missed")

    asyncio.run(scenario())

    assert recorder.alerts == [("a", "missed")]
    assert sync.records["a"].status == "missed"


def test_own_check_in_is_not_synced(backend):
    recorder = AlertRecorder()
    sync = CheckInSync(backend, on_alert=recorder)

    async def scenario():
        await sync.start("me", ["a"])
        await backend.create_check_in("me", status="unsafe", is_emergency=True)

    asyncio.run(scenario())

    assert sync.records == {}
    assert recorder.alerts == []


def test_removed_connection_is_dropped_from_records(backend):
    sync = CheckInSync(backend)

    async def scenario():
        await sync.start("me", ["a", "b"])
        await backend.create_check_in("a", status="safe")
        await backend.create_check_in("b", status="safe")
        await sync.set_connections(["b"])
        await backend.create_check_in("a", status="unsafe")

    asyncio.run(scenario())

    assert set(sync.records) == {"b"}
