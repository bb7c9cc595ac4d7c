from __future__ import annotations

from datetime import datetime, timezone

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from aipulse.banner import BannerAction, BannerSpec
from aipulse.models import UpdateSnapshot, UpdateStatus, UsageHistoryEntry, UsageStoreEntry

ACTION_LABELS = {
    BannerAction.OPEN_PROVIDER_SITE: "[o] open site",
    BannerAction.OPEN_SETTINGS: "[s] update credentials",
    BannerAction.RETRY: "[r] retry",
}


def _bar_color(pct: float) -> str:
    if pct >= 80.0:
        return "red"
    if pct >= 50.0:
        return "yellow"
    return "green"


def usage_bar(utilization: float | None, width: int = 30) -> Text:
    if utilization is None:
        return Text("── no data ──", style="dim")
    shown = max(0.0, utilization * 100.0)
    bar_pct = min(100.0, shown)
    filled = int(round((bar_pct / 100.0) * width))
    empty = width - filled
    color = _bar_color(shown)
    bar = Text()
    bar.append("━" * filled, style=f"bold {color}")
    bar.append("╌" * empty, style="bright_black")
    bar.append(f"  {shown:5.1f}%", style=f"bold {color}")
    return bar


def format_time_until(when: datetime | None, now: datetime | None = None) -> str:
    if when is None:
        return "-"
    total_seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    if total_seconds <= 0:
        return "now"
    days = int(total_seconds // 86400)
    hours = int((total_seconds % 86400) // 3600)
    minutes = int((total_seconds % 3600) // 60)
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _fmt_clock(dt: datetime | None) -> str:
    if dt is None:
        return "Not yet refreshed"
    return "Last updated: " + dt.astimezone().strftime("%H:%M:%S")


def render_banner(spec: BannerSpec) -> Panel:
    body = Text()
    body.append(spec.message)
    body.append("\n\n")
    body.append("   ".join(ACTION_LABELS[a] for a in spec.actions), style="bold")
    body.append("   [d] dismiss", style="dim")
    return Panel(body, title=f"[bold]⚠ {spec.title}[/]", border_style=spec.color, padding=(0, 1))


def render_entry(title: str, entry: UsageStoreEntry, banner: BannerSpec | None = None) -> Panel:
    table = Table.grid(padding=(0, 1), expand=True)
    table.add_column("label", no_wrap=True, style="bold bright_white", ratio=1)
    table.add_column("value", ratio=4)

    if entry.loading:
        table.add_row("Status", Text("⟳ refreshing…", style="bold cyan"))

    if entry.error and banner is None:
        table.add_row("Error", Text(entry.error, style="red"))

    if entry.usage is not None and entry.usage.limits:
        for limit in entry.usage.limits:
            table.add_row("", Text())
            table.add_row(Text(limit.label, style="bold cyan"), usage_bar(limit.utilization))
            table.add_row(Text("  resets in", style="dim"), Text(format_time_until(limit.resets_at), style="bright_white"))
    elif not entry.loading:
        table.add_row("", Text("No usage data available", style="dim"))
        table.add_row("", Text("Configure your credentials in Settings", style="dim italic"))

    border = "#ff5e6c" if entry.error else "#2be38f" if entry.usage else "#7184d6"
    body = Group(render_banner(banner), table) if banner is not None else table
    return Panel(
        body,
        title=f"[bold bright_white] {title.upper()} [/]",
        subtitle=f"[dim]{_fmt_clock(entry.last_refresh)}[/]",
        border_style=border,
        padding=(1, 2),
    )


def render_history(title: str, history: list[UsageHistoryEntry], rows: int = 20) -> Panel:
    table = Table(expand=True, show_edge=False)
    table.add_column("time", style="dim", no_wrap=True)
    labels: list[str] = []
    for item in history:
        for limit in item.limits:
            if limit.label not in labels:
                labels.append(limit.label)
    for label in labels:
        table.add_column(label, justify="right")

    for item in history[-rows:]:
        by_label = {limit.label: limit for limit in item.limits}
        cells = []
        for label in labels:
            limit = by_label.get(label)
            if limit is None:
                cells.append(Text("-", style="dim"))
            else:
                pct = limit.utilization * 100.0
                cells.append(Text(f"{pct:.0f}%", style=_bar_color(pct)))
        table.add_row(item.timestamp.astimezone().strftime("%H:%M:%S"), *cells)

    if not history:
        return Panel(Text("No refreshes recorded yet", style="dim"), title=f"[bold] {title.upper()} HISTORY [/]")
    return Panel(table, title=f"[bold] {title.upper()} HISTORY [/]", border_style="#7184d6")


def render_update(state: UpdateSnapshot, version: str) -> Panel:
    status = state.status
    text = Text()
    if status is UpdateStatus.IDLE:
        text.append("[u] Check for updates", style="bold")
    elif status is UpdateStatus.CHECKING:
        text.append("⟳ Checking for updates...", style="cyan")
    elif status is UpdateStatus.UP_TO_DATE:
        text.append("✓ You're up to date!", style="green")
    elif status is UpdateStatus.AVAILABLE:
        text.append(f"Update available: v{state.update_version}   ", style="bold")
        text.append("[u] Download & install", style="bold cyan")
    elif status is UpdateStatus.DOWNLOADING:
        text.append("Downloading update...  ")
        text.append_text(usage_bar(state.download_progress / 100.0, width=20))
    elif status is UpdateStatus.READY:
        text.append("✓ Update ready!   ", style="green")
        text.append("[u] Restart to apply", style="bold cyan")
        if state.error:
            text.append(f"\n{state.error}", style="red")
    elif status is UpdateStatus.ERROR:
        text.append(f"{state.error}\n", style="red")
        text.append("[u] Try again", style="bold")
    return Panel(text, title=f"[bold] AI Pulse v{version} [/]", border_style="bright_black", padding=(0, 1))
