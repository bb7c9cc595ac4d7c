import asyncio

from conftest import FakeGateway, make_usage

from aipulse.errors import RateLimited
from aipulse.events import TRAY_REFRESH, EventBus
from aipulse.models import ProviderName
from aipulse.orchestrator import NO_CREDENTIALS_MESSAGE, RefreshOrchestrator
from aipulse.store import UsageStore

CLAUDE = ProviderName.CLAUDE


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def test_refresh_without_credentials_never_fetches() -> None:
    store = UsageStore()
    gateway = FakeGateway(has_creds=False)

    async def run():
        return await RefreshOrchestrator(store, gateway).refresh(CLAUDE)

    entry = asyncio.run(run())
    assert gateway.fetch_calls == []
    assert entry.loading is False
    assert entry.error == NO_CREDENTIALS_MESSAGE


def test_successful_refresh_sets_usage_and_last_refresh() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    data = make_usage(CLAUDE, 0.4, 0.7)
    gateway.results.append(data)

    async def run():
        return await RefreshOrchestrator(store, gateway).refresh(CLAUDE)

    entry = asyncio.run(run())
    assert entry.usage is data
    assert entry.error is None
    assert entry.loading is False
    assert entry.last_refresh is not None
    assert store.history(CLAUDE)[-1].limits == data.limits


def test_failed_refresh_keeps_stale_usage_and_clears_loading() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    first = make_usage(CLAUDE, 0.3)
    gateway.results.extend([first, RateLimited()])

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        await orch.refresh(CLAUDE)
        return await orch.refresh(CLAUDE)

    entry = asyncio.run(run())
    assert entry.usage is first
    assert "429" in entry.error
    assert entry.loading is False


def test_failed_refresh_drops_usage_when_not_retaining_stale() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    gateway.results.extend([make_usage(CLAUDE), RuntimeError("boom")])

    async def run():
        orch = RefreshOrchestrator(store, gateway, retain_stale_on_error=False)
        await asyncio.gather(*orch.start([CLAUDE]))
        entry = await orch.refresh(CLAUDE)
        await orch.drain()
        return entry

    entry = asyncio.run(run())
    assert entry.usage is None
    assert entry.error == "boom"
    # clearing usage on failure is not a credential change
    assert len(gateway.fetch_calls) == 2


def test_loading_visible_while_fetch_in_flight() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    gateway.hold = True
    seen = []

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        task = asyncio.ensure_future(orch.refresh(CLAUDE))
        await _settle()
        seen.append(store.get(CLAUDE).loading)
        seen.append(orch.is_refreshing(CLAUDE))
        gateway.release()
        await task
        seen.append(store.get(CLAUDE).loading)

    asyncio.run(run())
    assert seen == [True, True, False]


def test_overlapping_refreshes_share_one_fetch() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    gateway.hold = True

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        first = asyncio.ensure_future(orch.refresh(CLAUDE))
        second = asyncio.ensure_future(orch.refresh(CLAUDE))
        await _settle()
        gateway.release()
        return await asyncio.gather(first, second)

    first, second = asyncio.run(run())
    assert len(gateway.fetch_calls) == 1
    assert first == second
    assert first.usage is not None and first.error is None


def test_cancelled_caller_does_not_cancel_shared_fetch() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    gateway.hold = True

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        impatient = asyncio.ensure_future(orch.refresh(CLAUDE))
        patient = asyncio.ensure_future(orch.refresh(CLAUDE))
        await _settle()
        impatient.cancel()
        await _settle()
        gateway.release()
        return await patient

    entry = asyncio.run(run())
    assert entry.usage is not None
    assert len(gateway.fetch_calls) == 1


def test_tray_signals_coalesce_while_in_flight() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    gateway.hold = True

    async def run():
        bus = EventBus()
        orch = RefreshOrchestrator(store, gateway)
        subscription = orch.activate(bus)
        bus.emit(TRAY_REFRESH)
        bus.emit(TRAY_REFRESH)
        await _settle()
        gateway.release()
        await orch.drain()
        calls_while_active = len(gateway.fetch_calls)

        subscription.close()
        bus.emit(TRAY_REFRESH)
        await _settle()
        await orch.drain()
        return calls_while_active, bus.handler_count(TRAY_REFRESH)

    calls, handlers = asyncio.run(run())
    assert calls == 1
    assert handlers == 0
    assert len(gateway.fetch_calls) == 1


def test_tray_refresh_targets_active_provider() -> None:
    store = UsageStore()
    gateway = FakeGateway()

    async def run():
        bus = EventBus()
        orch = RefreshOrchestrator(store, gateway, active_provider=ProviderName.CODEX)
        with orch.activate(bus):
            bus.emit(TRAY_REFRESH)
            await _settle()
            await orch.drain()

    asyncio.run(run())
    assert gateway.fetch_calls == [ProviderName.CODEX]


def test_startup_trigger_fires_once_per_provider() -> None:
    store = UsageStore()
    gateway = FakeGateway()

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        await asyncio.gather(*orch.start([CLAUDE]))
        assert orch.start([CLAUDE]) == []
        await orch.drain()

    asyncio.run(run())
    assert gateway.fetch_calls == [CLAUDE]


def test_clearing_usage_triggers_exactly_one_refresh() -> None:
    store = UsageStore()
    gateway = FakeGateway()

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        await asyncio.gather(*orch.start([CLAUDE]))
        assert store.get(CLAUDE).usage is not None

        store.set_error(CLAUDE, None)
        store.set_usage(CLAUDE, None)
        await orch.drain()

    asyncio.run(run())
    assert len(gateway.fetch_calls) == 2
    assert store.get(CLAUDE).usage is not None


def test_clearing_usage_before_startup_does_not_refresh() -> None:
    store = UsageStore()
    gateway = FakeGateway()

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        store.set_usage(CLAUDE, None)
        await _settle()
        await orch.drain()

    asyncio.run(run())
    assert gateway.fetch_calls == []


def test_clearing_usage_mid_fetch_refreshes_again_after_it() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    gateway.hold = True
    fresh = make_usage(CLAUDE, 0.9)

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        orch.start([CLAUDE])
        await _settle()
        gateway.results.extend([make_usage(CLAUDE, 0.1), fresh])
        store.set_usage(CLAUDE, None)
        gateway.release()
        await orch.drain()

    asyncio.run(run())
    assert len(gateway.fetch_calls) == 2
    assert store.get(CLAUDE).usage is fresh


def test_result_listener_sees_previous_and_current() -> None:
    store = UsageStore()
    gateway = FakeGateway()
    first, second = make_usage(CLAUDE, 0.2), make_usage(CLAUDE, 0.4)
    gateway.results.extend([first, second])
    seen = []

    async def run():
        orch = RefreshOrchestrator(store, gateway)
        orch.add_result_listener(lambda provider, prev, cur: seen.append((provider, prev, cur)))
        await orch.refresh(CLAUDE)
        await orch.refresh(CLAUDE)

    asyncio.run(run())
    assert seen == [(CLAUDE, None, first), (CLAUDE, first, second)]
