"""Creation point for the long-lived application objects.

One :class:`AppContext` per process, built at startup and handed to the
dashboard, the tray or a CLI command. Nothing in the package reaches for
module-level globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import asyncio
import logging

from aipulse.credentials import CREDENTIALS_PATH, CredentialStore
from aipulse.config import Config
from aipulse.events import EventBus, Subscription
from aipulse.gateway import BackendGateway, LocalGateway
from aipulse.models import Credentials, ProviderName
from aipulse.notifications import NotificationService, Notifier
from aipulse.orchestrator import RefreshOrchestrator
from aipulse.scheduler import RefreshScheduler
from aipulse.store import UsageStore
from aipulse.updater import PyPIUpdateGateway, UpdateController, UpdateGateway

log = logging.getLogger(__name__)


def _log_notification(title: str, body: str) -> None:
    log.info("notification: %s - %s", title, body)


@dataclass
class AppContext:
    cfg: Config
    store: UsageStore
    bus: EventBus
    gateway: BackendGateway
    orchestrator: RefreshOrchestrator
    scheduler: RefreshScheduler
    notifications: NotificationService
    updates: UpdateController
    subscription: Subscription | None = None

    def activate(self) -> None:
        """Startup trigger plus bus wiring; call from inside the running loop."""
        if self.subscription is None:
            self.subscription = self.orchestrator.activate(self.bus)
        self.orchestrator.start(self.cfg.enabled_providers())
        self.scheduler.start()

    async def deactivate(self) -> None:
        if self.subscription is not None:
            self.subscription.close()
            self.subscription = None
        await self.scheduler.stop()
        self.orchestrator.close()

    async def save_credentials(self, provider: ProviderName, credentials: Credentials) -> None:
        await self.gateway.save_credentials(provider, credentials)
        self.scheduler.clear_pause()
        self.invalidate(provider)

    async def delete_credentials(self, provider: ProviderName) -> None:
        await self.gateway.delete_credentials(provider)
        self.invalidate(provider)

    def invalidate(self, provider: ProviderName) -> None:
        # the orchestrator sees usage go absent and refetches
        self.store.set_error(provider, None)
        self.store.set_usage(provider, None)


def build_context(
    cfg: Config,
    notify: Notifier | None = None,
    gateway: BackendGateway | None = None,
    update_gateway: UpdateGateway | None = None,
    credentials_path: Path = CREDENTIALS_PATH,
    loop: asyncio.AbstractEventLoop | None = None,
) -> AppContext:
    store = UsageStore()
    bus = EventBus(loop)
    gateway = gateway or LocalGateway(CredentialStore(credentials_path))
    orchestrator = RefreshOrchestrator(
        store,
        gateway,
        active_provider=cfg.active_provider(),
        retain_stale_on_error=cfg.general.retain_stale_on_error,
    )
    notifications = NotificationService(cfg.notifications, notify or _log_notification, bus)
    scheduler = RefreshScheduler(
        orchestrator,
        cfg.enabled_providers(),
        mode=cfg.general.refresh_mode,
        refresh_seconds=cfg.general.refresh_seconds,
        on_pause=notifications.send_session_expiry_warning,
    )
    orchestrator.add_result_listener(notifications.on_result)
    updates = UpdateController(update_gateway or PyPIUpdateGateway(cfg.updates.index_url))
    return AppContext(
        cfg=cfg,
        store=store,
        bus=bus,
        gateway=gateway,
        orchestrator=orchestrator,
        scheduler=scheduler,
        notifications=notifications,
        updates=updates,
    )
