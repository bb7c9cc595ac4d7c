"""Process-wide usage state, one entry per provider.

The store performs no validation and has no side effects beyond notifying
subscribers synchronously after every mutation. The refresh orchestrator is
its only writer; the dashboard, tray and snapshot export read from it.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from aipulse.models import ProviderName, UsageData, UsageHistoryEntry, UsageStoreEntry

StoreListener = Callable[[ProviderName, str, UsageStoreEntry], None]

DEFAULT_HISTORY_SIZE = 100


class UsageStore:
    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._entries: dict[ProviderName, UsageStoreEntry] = {}
        self._history: dict[ProviderName, deque[UsageHistoryEntry]] = {}
        self._history_size = history_size
        self._listeners: list[StoreListener] = []

    def get(self, provider: ProviderName) -> UsageStoreEntry:
        return self._entries.get(provider, UsageStoreEntry())

    def providers(self) -> list[ProviderName]:
        return list(self._entries)

    def set_usage(self, provider: ProviderName, data: UsageData | None) -> None:
        self._update(provider, "usage", usage=data)
        if data is not None:
            history = self._history.setdefault(provider, deque(maxlen=self._history_size))
            history.append(UsageHistoryEntry(provider=provider, timestamp=data.timestamp, limits=data.limits))

    def set_loading(self, provider: ProviderName, loading: bool) -> None:
        self._update(provider, "loading", loading=loading)

    def set_error(self, provider: ProviderName, error: str | None) -> None:
        self._update(provider, "error", error=error)

    def set_last_refresh(self, provider: ProviderName, when: datetime) -> None:
        self._update(provider, "last_refresh", last_refresh=when)

    def history(self, provider: ProviderName) -> list[UsageHistoryEntry]:
        return list(self._history.get(provider, ()))

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register ``listener(provider, field, entry)``; returns the unsubscribe call."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, provider: ProviderName, field_name: str, **changes: object) -> None:
        entry = replace(self.get(provider), **changes)
        self._entries[provider] = entry
        for listener in list(self._listeners):
            listener(provider, field_name, entry)
