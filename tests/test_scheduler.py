import asyncio

from resolvehub_client.errors import TransportError
from resolvehub_client.scheduler import AutoRefreshScheduler


async def test_second_start_replaces_the_running_loop():
    ticks = []
    scheduler = AutoRefreshScheduler()

    scheduler.start(lambda: ticks.append("first"), 0.01)
    scheduler.start(lambda: ticks.append("second"), 0.01)
    await asyncio.sleep(0.05)
    scheduler.stop()

    assert ticks
    assert set(ticks) == {"second"}
    assert not scheduler.running


async def test_async_tick_is_awaited():
    calls = 0

    async def tick():
        nonlocal calls
        calls += 1

    scheduler = AutoRefreshScheduler()
    scheduler.start(tick, 0.01)
    await asyncio.sleep(0.05)
    scheduler.stop()

    assert calls >= 2


async def test_guard_blocks_start_and_ends_loop():
    session = {"token": "abc"}
    scheduler = AutoRefreshScheduler(guard=lambda: session["token"] is not None)

    scheduler.start(lambda: None, 0.01)
    assert scheduler.running

    session["token"] = None
    await asyncio.sleep(0.05)
    assert not scheduler.running

    scheduler.start(lambda: None, 0.01)
    assert not scheduler.running


async def test_failing_tick_keeps_polling():
    calls = 0

    def tick():
        nonlocal calls
        calls += 1
        raise TransportError("down")

    scheduler = AutoRefreshScheduler()
    scheduler.start(tick, 0.01)
    await asyncio.sleep(0.05)

    assert scheduler.running
    assert calls >= 2
    scheduler.stop()
