from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from aipulse.banner import BannerCategory, classify
from aipulse.models import ProviderName
from aipulse.orchestrator import RefreshOrchestrator

log = logging.getLogger(__name__)

MAX_SESSION_ERRORS = 3

# (minimum utilization, seconds until next refresh), highest first
ADAPTIVE_STEPS = [
    (0.90, 60),
    (0.75, 180),
    (0.50, 300),
]
ADAPTIVE_IDLE_SECONDS = 600


@dataclass
class SchedulerStatus:
    running: bool
    paused: bool
    interval: int
    last_fetch: datetime | None
    session_error_count: int


class RefreshScheduler:
    """Periodic refresh trigger with an adaptive cadence.

    In ``adaptive`` mode the sleep between rounds shrinks as the highest
    utilization across the watched providers grows. Repeated session errors
    pause the loop until :meth:`resume` is called, so an expired session key
    is not hammered against the backend.
    """

    def __init__(
        self,
        orchestrator: RefreshOrchestrator,
        providers: list[ProviderName],
        mode: str = "adaptive",
        refresh_seconds: int = 300,
        max_session_errors: int = MAX_SESSION_ERRORS,
        on_pause: Callable[[], None] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.providers = providers
        self.mode = mode
        self.refresh_seconds = refresh_seconds
        self.max_session_errors = max_session_errors
        self.on_pause = on_pause

        self.paused = False
        self.session_error_count = 0
        self.last_fetch: datetime | None = None
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.running,
            paused=self.paused,
            interval=self.next_interval(),
            last_fetch=self.last_fetch,
            session_error_count=self.session_error_count,
        )

    def next_interval(self) -> int:
        if self.mode != "adaptive":
            return self.refresh_seconds
        peaks = []
        for provider in self.providers:
            usage = self.orchestrator.store.get(provider).usage
            if usage is not None and usage.limits:
                peaks.append(usage.max_utilization())
        if not peaks:
            return self.refresh_seconds
        peak = max(peaks)
        for floor, seconds in ADAPTIVE_STEPS:
            if peak >= floor:
                return seconds
        return ADAPTIVE_IDLE_SECONDS

    def set_interval(self, seconds: int) -> None:
        self.refresh_seconds = seconds
        self._wake.set()

    def start(self) -> None:
        if self.running:
            return
        log.info("starting refresh scheduler (%s, %ss)", self.mode, self.refresh_seconds)
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="refresh-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("refresh scheduler stopped")

    async def force_refresh(self) -> None:
        await self._round()

    def clear_pause(self) -> None:
        """Forget past session errors, e.g. after the credentials were replaced."""
        if self.paused:
            log.info("scheduler unpaused")
        self.session_error_count = 0
        self.paused = False

    async def resume(self) -> None:
        self.clear_pause()
        log.info("scheduler resumed by user")
        await self.force_refresh()

    async def tick(self) -> None:
        """One scheduled round; skipped while paused."""
        if self.paused:
            log.debug("scheduler paused; skipping round")
            return
        await self._round()

    async def _round(self) -> None:
        results = await asyncio.gather(*(self.orchestrator.refresh(p) for p in self.providers))
        self.last_fetch = datetime.now(timezone.utc)

        if any(classify(entry.error) is BannerCategory.EXPIRED for entry in results):
            self.session_error_count += 1
            log.warning("session error %d/%d", self.session_error_count, self.max_session_errors)
            if self.session_error_count >= self.max_session_errors and not self.paused:
                self.paused = True
                log.warning("pausing scheduler after %d session errors", self.session_error_count)
                if self.on_pause is not None:
                    self.on_pause()
        else:
            self.session_error_count = 0

    async def _loop(self) -> None:
        while True:
            self._wake.clear()
            interval = self.next_interval()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
                continue
            except asyncio.TimeoutError:
                pass
            await self.tick()
