"""Named-signal bus connecting the tray, notifications and the dashboard.

Delivery is asynchronous: ``emit`` schedules every handler on the event loop
with ``call_soon``, which keeps deliveries FIFO per signal name. Handlers may
be plain callables or coroutine functions.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable
import inspect
import logging

log = logging.getLogger(__name__)

TRAY_REFRESH = "tray-refresh"
MENU_USAGE = "menu-usage"
MENU_ANALYTICS = "menu-analytics"
USAGE_RESET = "usage-reset"

SIGNALS = (TRAY_REFRESH, MENU_USAGE, MENU_ANALYTICS, USAGE_RESET)

Handler = Callable[[object], object]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`; release it on deactivation."""

    def __init__(self, release: Callable[[], None] | None = None) -> None:
        self._releases: list[Callable[[], None]] = [release] if release else []
        self.closed = False

    def add(self, other: Subscription) -> None:
        self._releases.append(other.close)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for release in reversed(self._releases):
            release()
        self._releases.clear()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventBus:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, name: str, handler: Handler) -> Subscription:
        self._handlers[name].append(handler)
        log.debug("subscribed %r to %s", handler, name)

        def release() -> None:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

        return Subscription(release)

    def handler_count(self, name: str) -> int:
        return len(self._handlers.get(name, ()))

    def emit(self, name: str, payload: object = None) -> None:
        loop = self._loop or asyncio.get_running_loop()
        for handler in list(self._handlers.get(name, ())):
            loop.call_soon(self._deliver, name, handler, payload)

    def emit_threadsafe(self, name: str, payload: object = None) -> None:
        """Emit from a thread that does not own the loop (e.g. the tray menu)."""
        if self._loop is None:
            raise RuntimeError("emit_threadsafe requires an EventBus bound to a loop")
        self._loop.call_soon_threadsafe(self.emit, name, payload)

    def _deliver(self, name: str, handler: Handler, payload: object) -> None:
        try:
            result = handler(payload)
        except Exception:
            log.exception("handler for %s failed", name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("async handler failed", exc_info=task.exception())
