from __future__ import annotations

import asyncio
import logging
import threading

from PIL import Image, ImageDraw
import pystray  # type: ignore[import-untyped]

from aipulse.config import Config
from aipulse.context import AppContext, build_context
from aipulse.events import MENU_ANALYTICS, MENU_USAGE, TRAY_REFRESH, Subscription
from aipulse.tray.bridge import summary_line

log = logging.getLogger(__name__)


def _create_icon(utilization: float | None = None) -> Image.Image:
    size = (64, 64)
    image = Image.new("RGBA", size, (22, 28, 54, 255))
    draw = ImageDraw.Draw(image)
    draw.ellipse((8, 8, 56, 56), outline=(60, 70, 110), width=6)
    if utilization is not None:
        color = (255, 94, 108) if utilization >= 0.8 else (242, 201, 76) if utilization >= 0.5 else (43, 227, 143)
        draw.arc((8, 8, 56, 56), start=-90, end=-90 + int(360 * min(1.0, utilization)), fill=color, width=6)
    draw.line((20, 32, 26, 32, 29, 24, 33, 40, 37, 28, 40, 32, 44, 32), fill=(235, 242, 255), width=3)
    return image


def _peak(ctx: AppContext) -> float | None:
    peaks = [
        usage.max_utilization()
        for usage in (ctx.store.get(p).usage for p in ctx.cfg.enabled_providers())
        if usage is not None and usage.limits
    ]
    return max(peaks) if peaks else None


def run_tray(cfg: Config) -> None:
    loop = asyncio.new_event_loop()
    icon = pystray.Icon("aipulse", _create_icon(), "AI Pulse")
    ctx = build_context(cfg, notify=lambda title, body: icon.notify(body, title), loop=loop)
    providers = cfg.enabled_providers()
    subscription = Subscription()

    def on_store_change(*_: object) -> None:
        icon.title = summary_line(ctx.store, providers)
        icon.icon = _create_icon(_peak(ctx))

    def quit_app(icon_: pystray.Icon, _item) -> None:
        asyncio.run_coroutine_threadsafe(shutdown(), loop).result(timeout=10)
        loop.call_soon_threadsafe(loop.stop)
        icon_.stop()

    icon.menu = pystray.Menu(
        pystray.MenuItem("Refresh", lambda *_: ctx.bus.emit_threadsafe(TRAY_REFRESH)),
        pystray.MenuItem("Usage", lambda *_: ctx.bus.emit_threadsafe(MENU_USAGE)),
        pystray.MenuItem("Analytics", lambda *_: ctx.bus.emit_threadsafe(MENU_ANALYTICS)),
        pystray.Menu.SEPARATOR,
        pystray.MenuItem("Quit", quit_app),
    )

    async def activate() -> None:
        subscription.add(Subscription(ctx.store.subscribe(on_store_change)))
        ctx.activate()

    async def shutdown() -> None:
        subscription.close()
        await ctx.deactivate()

    t = threading.Thread(target=loop.run_forever, name="aipulse-loop", daemon=True)
    t.start()
    asyncio.run_coroutine_threadsafe(activate(), loop).result(timeout=10)
    log.info("tray started for %s", ", ".join(p.value for p in providers))
    icon.run()
