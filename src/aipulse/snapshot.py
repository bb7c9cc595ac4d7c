from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
import json

from aipulse.banner import classify
from aipulse.config import Config
from aipulse.models import ProviderName
from aipulse.store import UsageStore


def _json_default(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"not serializable: {type(obj)!r}")


def store_snapshot(store: UsageStore, providers: list[ProviderName]) -> dict:
    entries = {}
    for provider in providers:
        entry = store.get(provider)
        usage = entry.usage
        category = classify(entry.error)
        entries[provider.value] = {
            "loading": entry.loading,
            "error": entry.error,
            "banner": category.value if category else None,
            "last_refresh": entry.last_refresh,
            "limits": [asdict(limit) for limit in usage.limits] if usage else [],
            "timestamp": usage.timestamp if usage else None,
        }
    return {"generated_at": datetime.now(timezone.utc), "providers": entries}


def snapshot_to_json(snapshot: dict) -> str:
    return json.dumps(snapshot, default=_json_default, indent=2)


def write_snapshot_file(cfg: Config, snapshot: dict) -> Path:
    state_file = Path(cfg.general.state_file)
    state_file.parent.mkdir(parents=True, exist_ok=True)
    state_file.write_text(snapshot_to_json(snapshot))
    return state_file
