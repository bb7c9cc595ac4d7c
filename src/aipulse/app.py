from __future__ import annotations

from collections.abc import Awaitable, Callable
import webbrowser

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Footer, Header, Input, Label, TabbedContent, TabPane

from aipulse.context import AppContext, build_context
from aipulse.config import Config
from aipulse.errors import AIPulseError
from aipulse.events import MENU_ANALYTICS, MENU_USAGE, USAGE_RESET, Subscription
from aipulse.gateway import default_providers
from aipulse.models import ConnectionTestResult, Credentials, ProviderName, UsageStoreEntry
from aipulse.ui.theme import APP_CSS
from aipulse.ui.widgets import HistoryView, ProviderCard, UpdatePanel
from aipulse.updater import installed_version

ConnectionTester = Callable[[ProviderName, Credentials], Awaitable[ConnectionTestResult]]


class CredentialsScreen(ModalScreen[Credentials | None]):
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, provider: ProviderName, existing: Credentials | None, tester: ConnectionTester) -> None:
        super().__init__()
        self.provider = provider
        self.existing = existing or Credentials()
        self.tester = tester

    def compose(self) -> ComposeResult:
        with Vertical(id="credentials"):
            yield Label(f"{self.provider.value.title()} credentials")
            yield Label("Organization ID (claude.ai/settings/organization/<org-id>)")
            yield Input(value=self.existing.org_id or "", placeholder="xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx", id="org-id")
            yield Label("Session Key (DevTools → Application → Cookies → sessionKey)")
            yield Input(value=self.existing.session_key or "", placeholder="sk-ant-...", password=True, id="session-key")
            yield Label("", id="credentials-error")
            yield Button("Test Connection", id="test")
            yield Button("Save Credentials", variant="primary", id="save")
            yield Button("Cancel", id="cancel")

    def _entered(self) -> Credentials:
        return Credentials(
            org_id=self.query_one("#org-id", Input).value.strip(),
            session_key=self.query_one("#session-key", Input).value.strip(),
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "test":
            self.run_worker(self._test_connection(self._entered()), group="test", exclusive=True)
            return
        if event.button.id != "save":
            self.dismiss(None)
            return
        creds = self._entered()
        if not creds.org_id or not creds.session_key:
            self.query_one("#credentials-error", Label).update("Both Organization ID and Session Key are required")
            return
        self.dismiss(creds)

    async def _test_connection(self, creds: Credentials) -> None:
        status = self.query_one("#credentials-error", Label)
        status.update("Testing connection...")
        result = await self.tester(self.provider, creds)
        if result.success:
            status.update("[green]Connection successful[/]")
        else:
            status.update(f"{result.error_message}\n{result.hint or ''}".strip())

    def action_cancel(self) -> None:
        self.dismiss(None)


class AIPulseApp(App):
    CSS = APP_CSS
    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("r", "refresh", "Refresh"),
        Binding("d", "dismiss_banner", "Dismiss"),
        Binding("s", "settings", "Credentials"),
        Binding("o", "open_site", "Open site"),
        Binding("u", "update", "Update"),
        Binding("p", "resume", "Resume polling"),
        Binding("1", "show_usage", "Usage"),
        Binding("2", "show_analytics", "Analytics"),
    ]

    def __init__(self, ctx: AppContext):
        super().__init__()
        self.ctx = ctx
        self._providers = ctx.cfg.enabled_providers()
        self._cards: dict[ProviderName, ProviderCard] = {}
        self._history: dict[ProviderName, HistoryView] = {}
        self._subscription = Subscription()
        self._update_panel = UpdatePanel(installed_version(), id="update")

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with TabbedContent(id="tabs", initial="usage"):
            with TabPane("USAGE", id="usage"):
                with VerticalScroll():
                    for provider in self._providers:
                        card = ProviderCard(provider.value.title(), id=f"card-{provider.value}")
                        self._cards[provider] = card
                        yield card
            with TabPane("ANALYTICS", id="analytics"):
                with VerticalScroll():
                    for provider in self._providers:
                        view = HistoryView(provider.value.title(), id=f"history-{provider.value}")
                        self._history[provider] = view
                        yield view
        yield self._update_panel
        yield Footer()

    def on_mount(self) -> None:
        ctx = self.ctx
        ctx.notifications.notify = lambda title, body: self.notify(body, title=title)
        for provider, card in self._cards.items():
            card.render_entry(ctx.store.get(provider))
            self._history[provider].render_history(ctx.store.history(provider))
        self._update_panel.render_state(ctx.updates.state)

        self._subscription = Subscription(ctx.store.subscribe(self._on_store_change))
        self._subscription.add(Subscription(ctx.updates.subscribe(self._update_panel.render_state)))
        self._subscription.add(ctx.bus.subscribe(MENU_USAGE, lambda _: self.action_show_usage()))
        self._subscription.add(ctx.bus.subscribe(MENU_ANALYTICS, lambda _: self.action_show_analytics()))
        self._subscription.add(ctx.bus.subscribe(USAGE_RESET, self._on_usage_reset))

        ctx.activate()
        if ctx.cfg.updates.check_on_startup:
            self.run_worker(ctx.updates.check_for_updates(), group="update")

    async def on_unmount(self) -> None:
        self._subscription.close()
        await self.ctx.deactivate()

    def _on_store_change(self, provider: ProviderName, field_name: str, entry: UsageStoreEntry) -> None:
        card = self._cards.get(provider)
        if card is None:
            return
        card.render_entry(entry)
        if field_name == "usage" and entry.usage is not None:
            self._history[provider].render_history(self.ctx.store.history(provider))

    def _on_usage_reset(self, limit_id: object) -> None:
        self.notify(f"🎉 {limit_id} has reset!", title="Usage Reset")

    @property
    def active_provider(self) -> ProviderName:
        return self.ctx.orchestrator.active_provider

    def action_refresh(self) -> None:
        self.run_worker(self.ctx.orchestrator.refresh(self.active_provider), group="refresh")

    def action_dismiss_banner(self) -> None:
        card = self._cards.get(self.active_provider)
        if card is not None:
            card.dismiss_banner()

    def action_open_site(self) -> None:
        adapter = default_providers().get(self.active_provider)
        if adapter is not None:
            webbrowser.open(adapter.site_url)

    def action_settings(self) -> None:
        provider = self.active_provider
        self.run_worker(self._edit_credentials(provider), group="settings", exclusive=True)

    async def _edit_credentials(self, provider: ProviderName) -> None:
        existing = await self.ctx.gateway.get_credentials(provider)
        creds = await self.push_screen_wait(CredentialsScreen(provider, existing, self.ctx.gateway.check_connection))
        if creds is None:
            return
        try:
            await self.ctx.save_credentials(provider, creds)
        except AIPulseError as exc:
            self.notify(str(exc), title="Credentials", severity="error")
            return
        self.notify("Credentials saved successfully", title="Credentials")

    def action_update(self) -> None:
        self.run_worker(self.ctx.updates.advance(), group="update")

    def action_resume(self) -> None:
        if not self.ctx.scheduler.paused:
            self.notify("Automatic refresh is running", title="Scheduler")
            return
        self.run_worker(self.ctx.scheduler.resume(), group="refresh")

    def action_show_usage(self) -> None:
        self.query_one(TabbedContent).active = "usage"

    def action_show_analytics(self) -> None:
        self.query_one(TabbedContent).active = "analytics"


def run_dashboard(cfg: Config) -> None:
    app = AIPulseApp(build_context(cfg))
    app.run()
