import asyncio

import pytest

from aipulse.events import MENU_USAGE, TRAY_REFRESH, EventBus, Subscription


def test_deliveries_are_fifo_and_asynchronous() -> None:
    received: list[object] = []

    async def run() -> None:
        bus = EventBus()
        bus.subscribe(TRAY_REFRESH, received.append)
        bus.emit(TRAY_REFRESH, 1)
        bus.emit(TRAY_REFRESH, 2)
        bus.emit(TRAY_REFRESH, 3)
        assert received == []
        await asyncio.sleep(0)

    asyncio.run(run())
    assert received == [1, 2, 3]


def test_coroutine_handlers_are_awaited() -> None:
    received: list[object] = []

    async def handler(payload: object) -> None:
        await asyncio.sleep(0)
        received.append(payload)

    async def run() -> None:
        bus = EventBus()
        bus.subscribe(MENU_USAGE, handler)
        bus.emit(MENU_USAGE, "open")
        for _ in range(5):
            await asyncio.sleep(0)

    asyncio.run(run())
    assert received == ["open"]


def test_failing_handler_does_not_block_others() -> None:
    received: list[object] = []

    def broken(payload: object) -> None:
        raise RuntimeError("boom")

    async def run() -> None:
        bus = EventBus()
        bus.subscribe(TRAY_REFRESH, broken)
        bus.subscribe(TRAY_REFRESH, received.append)
        bus.emit(TRAY_REFRESH, "x")
        await asyncio.sleep(0)

    asyncio.run(run())
    assert received == ["x"]


def test_closed_subscription_stops_delivery() -> None:
    received: list[object] = []

    async def run() -> None:
        bus = EventBus()
        with bus.subscribe(TRAY_REFRESH, received.append):
            assert bus.handler_count(TRAY_REFRESH) == 1
        assert bus.handler_count(TRAY_REFRESH) == 0
        bus.emit(TRAY_REFRESH, "late")
        await asyncio.sleep(0)

    asyncio.run(run())
    assert received == []


def test_grouped_subscription_closes_once() -> None:
    calls: list[str] = []
    group = Subscription(lambda: calls.append("a"))
    group.add(Subscription(lambda: calls.append("b")))
    group.close()
    group.close()
    assert calls == ["b", "a"]


def test_emit_threadsafe_needs_bound_loop() -> None:
    with pytest.raises(RuntimeError):
        EventBus().emit_threadsafe(TRAY_REFRESH)


def test_emit_threadsafe_from_worker_thread() -> None:
    received: list[object] = []

    async def run() -> None:
        bus = EventBus(asyncio.get_running_loop())
        bus.subscribe(TRAY_REFRESH, received.append)
        await asyncio.to_thread(bus.emit_threadsafe, TRAY_REFRESH, "tray")
        for _ in range(5):
            await asyncio.sleep(0)

    asyncio.run(run())
    assert received == ["tray"]
