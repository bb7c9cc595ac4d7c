from conftest import make_usage

from aipulse.models import ProviderName, UsageStoreEntry
from aipulse.store import UsageStore

CLAUDE = ProviderName.CLAUDE
CODEX = ProviderName.CODEX


def test_unknown_provider_reads_empty_entry() -> None:
    assert UsageStore().get(CLAUDE) == UsageStoreEntry()


def test_listeners_see_every_mutation() -> None:
    store = UsageStore()
    seen: list[tuple[ProviderName, str, UsageStoreEntry]] = []
    unsubscribe = store.subscribe(lambda p, f, e: seen.append((p, f, e)))

    store.set_loading(CLAUDE, True)
    store.set_error(CLAUDE, "boom")
    unsubscribe()
    store.set_loading(CLAUDE, False)

    assert [(p, f) for p, f, _ in seen] == [(CLAUDE, "loading"), (CLAUDE, "error")]
    assert seen[-1][2].loading is True
    assert seen[-1][2].error == "boom"
    assert store.get(CLAUDE).loading is False


def test_providers_are_independent() -> None:
    store = UsageStore()
    store.set_usage(CLAUDE, make_usage(CLAUDE, 0.5))
    store.set_error(CODEX, "unavailable")
    assert store.get(CLAUDE).error is None
    assert store.get(CODEX).usage is None
    assert set(store.providers()) == {CLAUDE, CODEX}


def test_history_is_bounded_and_skips_cleared_usage() -> None:
    store = UsageStore(history_size=3)
    for value in (0.1, 0.2, 0.3, 0.4):
        store.set_usage(CLAUDE, make_usage(CLAUDE, value))
    store.set_usage(CLAUDE, None)

    history = store.history(CLAUDE)
    assert [item.limits[0].utilization for item in history] == [0.2, 0.3, 0.4]
    assert store.get(CLAUDE).usage is None
    assert store.history(CODEX) == []
