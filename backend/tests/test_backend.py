"""Backend gateway tests."""

import asyncio
import time

from sqlalchemy import event

from famguard.services.backend import SafetyBackend


def test_queries_do_not_block_the_event_loop(engine, session_factory):
    backend = SafetyBackend(session_factory)

    def slow_statement(*args):
        time.sleep(0.2)

    event.listen(engine, "before_cursor_execute", slow_statement)

    async def scenario():
        gaps = []
        done = asyncio.Event()

        async def heartbeat():
            last = time.monotonic()
            while not done.is_set():
                await asyncio.sleep(0.005)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        beat = asyncio.create_task(heartbeat())
        await backend.create_incident(category="fire", title="Market fire", latitude=6.5, longitude=3.4)
        await backend.has_been_notified_today("u1")
        done.set()
        await beat
        return gaps

    try:
        gaps = asyncio.run(scenario())
    finally:
        event.remove(engine, "before_cursor_execute", slow_statement)

    assert len(gaps) > 10
    assert max(gaps) < 0.1


def test_concurrent_calls_overlap(engine, session_factory):
    backend = SafetyBackend(session_factory)

    def slow_statement(*args):
        time.sleep(0.2)

    event.listen(engine, "before_cursor_execute", slow_statement)

    async def scenario():
        started = time.monotonic()
        await asyncio.gather(*(backend.has_been_notified_today(f"u{i}") for i in range(4)))
        return time.monotonic() - started

    try:
        elapsed = asyncio.run(scenario())
    finally:
        event.remove(engine, "before_cursor_execute", slow_statement)

    # Four serial reads would take at least 0.8s
    assert elapsed < 0.6
