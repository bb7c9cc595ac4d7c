from __future__ import annotations

from textual.widgets import Static

from aipulse.banner import BannerState
from aipulse.models import UpdateSnapshot, UsageHistoryEntry, UsageStoreEntry
from aipulse.ui.render import render_entry, render_history, render_update


class ProviderCard(Static):
    def __init__(self, title: str, **kwargs):
        super().__init__(**kwargs)
        self.heading = title
        self.banner = BannerState()
        self._entry = UsageStoreEntry()

    def render_entry(self, entry: UsageStoreEntry) -> None:
        self._entry = entry
        spec = self.banner.observe(entry.error)
        self.update(render_entry(self.heading, entry, spec))

    def dismiss_banner(self) -> None:
        self.banner.dismiss()
        self.render_entry(self._entry)


class HistoryView(Static):
    def __init__(self, title: str, **kwargs):
        super().__init__(**kwargs)
        self.heading = title

    def render_history(self, history: list[UsageHistoryEntry]) -> None:
        self.update(render_history(self.heading, history))


class UpdatePanel(Static):
    def __init__(self, version: str, **kwargs):
        super().__init__(**kwargs)
        self.version = version

    def render_state(self, state: UpdateSnapshot) -> None:
        self.update(render_update(state, self.version))
