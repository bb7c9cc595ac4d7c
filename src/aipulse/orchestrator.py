"""Refresh orchestration: the only writer of the usage store.

Every trigger (startup, scheduler tick, tray signal, manual refresh,
credential invalidation) ends up in :meth:`RefreshOrchestrator.refresh`.
At most one fetch per provider is in flight; a refresh requested while one
is running awaits the running one instead of issuing another backend call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
import logging

from aipulse.events import TRAY_REFRESH, EventBus, Subscription
from aipulse.gateway import BackendGateway
from aipulse.models import ProviderName, UsageData, UsageStoreEntry
from aipulse.store import UsageStore

log = logging.getLogger(__name__)

NO_CREDENTIALS_MESSAGE = "No credentials configured. Please set up your credentials in Settings."

ResultListener = Callable[[ProviderName, UsageData | None, UsageData], None]


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class RefreshOrchestrator:
    def __init__(
        self,
        store: UsageStore,
        gateway: BackendGateway,
        active_provider: ProviderName = ProviderName.CLAUDE,
        retain_stale_on_error: bool = True,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.active_provider = active_provider
        self.retain_stale_on_error = retain_stale_on_error

        self._inflight: dict[ProviderName, asyncio.Task[UsageStoreEntry]] = {}
        self._rerun: set[ProviderName] = set()
        self._started: set[ProviderName] = set()
        self._result_listeners: list[ResultListener] = []
        self._writing_usage = False
        self._unsubscribe_store = store.subscribe(self._on_store_change)

    # -- triggers ---------------------------------------------------------

    async def refresh(self, provider: ProviderName) -> UsageStoreEntry:
        task = self._inflight.get(provider)
        if task is not None:
            log.debug("refresh for %s already in flight; joining it", provider.value)
        else:
            task = self._spawn(provider)
        # shield: a cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(task)

    def start(self, providers: Iterable[ProviderName]) -> list[asyncio.Task[UsageStoreEntry]]:
        """Startup trigger; fires once per provider for the life of the orchestrator."""
        tasks = []
        for provider in providers:
            if provider in self._started:
                continue
            self._started.add(provider)
            tasks.append(self._inflight.get(provider) or self._spawn(provider))
        return tasks

    def activate(self, bus: EventBus) -> Subscription:
        """Subscribe to bus triggers; close the returned handle on deactivation."""
        return bus.subscribe(TRAY_REFRESH, self._on_tray_refresh)

    def add_result_listener(self, listener: ResultListener) -> None:
        self._result_listeners.append(listener)

    def is_refreshing(self, provider: ProviderName) -> bool:
        return provider in self._inflight

    async def drain(self) -> None:
        """Wait until no fetch is in flight, including follow-up refreshes."""
        while self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

    def close(self) -> None:
        self._unsubscribe_store()
        for task in self._inflight.values():
            task.cancel()

    # -- internals ----------------------------------------------------------

    def _spawn(self, provider: ProviderName) -> asyncio.Task[UsageStoreEntry]:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(provider), name=f"refresh-{provider.value}")
        self._inflight[provider] = task
        return task

    async def _run(self, provider: ProviderName) -> UsageStoreEntry:
        try:
            while True:
                await self._refresh_once(provider)
                if provider not in self._rerun:
                    break
                self._rerun.discard(provider)
                log.info("credentials changed during refresh of %s; refreshing again", provider.value)
        finally:
            self._inflight.pop(provider, None)
        return self.store.get(provider)

    async def _refresh_once(self, provider: ProviderName) -> None:
        store = self.store
        previous = store.get(provider).usage
        store.set_loading(provider, True)
        store.set_error(provider, None)
        try:
            if not await self.gateway.has_credentials(provider):
                log.debug("no credentials for %s; skipping fetch", provider.value)
                store.set_error(provider, NO_CREDENTIALS_MESSAGE)
                return

            log.info("refreshing usage for %s", provider.value)
            data = await self.gateway.fetch_usage(provider)
            store.set_usage(provider, data)
            store.set_last_refresh(provider, datetime.now(timezone.utc))
            self._notify_result(provider, previous, data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            message = _error_message(exc)
            log.warning("refresh of %s failed: %s", provider.value, message)
            store.set_error(provider, message)
            if not self.retain_stale_on_error:
                self._set_usage_internal(provider, None)
        finally:
            store.set_loading(provider, False)

    def _set_usage_internal(self, provider: ProviderName, data: UsageData | None) -> None:
        self._writing_usage = True
        try:
            self.store.set_usage(provider, data)
        finally:
            self._writing_usage = False

    def _notify_result(self, provider: ProviderName, previous: UsageData | None, current: UsageData) -> None:
        for listener in list(self._result_listeners):
            try:
                listener(provider, previous, current)
            except Exception:
                log.exception("result listener failed for %s", provider.value)

    def _on_tray_refresh(self, _payload: object = None) -> None:
        provider = self.active_provider
        if provider in self._inflight:
            log.debug("tray refresh for %s coalesced with running fetch", provider.value)
            return
        self._spawn(provider)

    def _on_store_change(self, provider: ProviderName, field_name: str, entry: UsageStoreEntry) -> None:
        # usage cleared from outside (credential save/delete) on a provider that
        # has already had its startup refresh: fetch again
        if field_name != "usage" or entry.usage is not None or self._writing_usage:
            return
        if provider not in self._started:
            return
        if provider in self._inflight:
            self._rerun.add(provider)
            return
        try:
            self._spawn(provider)
        except RuntimeError:
            log.warning("usage for %s cleared outside the event loop; not refreshing", provider.value)
