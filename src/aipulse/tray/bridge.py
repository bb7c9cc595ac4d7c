from __future__ import annotations

from aipulse.models import ProviderName
from aipulse.store import UsageStore


def summary_line(store: UsageStore, providers: list[ProviderName]) -> str:
    parts: list[str] = []
    for provider in providers:
        entry = store.get(provider)
        if entry.usage is None or not entry.usage.limits:
            parts.append(f"{provider.value}: {'error' if entry.error else '-'}")
            continue
        shown = " ".join(f"{_short(limit.id)}{_fmt(limit.utilization)}" for limit in entry.usage.limits[:2])
        parts.append(f"{provider.value}: {shown}")
    return "AI Pulse | " + " | ".join(parts) if parts else "AI Pulse: no providers"


def _short(limit_id: str) -> str:
    return {"five_hour": "S", "seven_day": "W"}.get(limit_id, limit_id[:1].upper())


def _fmt(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value * 100:.0f}%"
