from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from aipulse.models import Credentials, ProviderName, UsageData, UsageLimit


class UsageProvider(ABC):
    name: ProviderName
    display_name: str
    site_url: str

    @abstractmethod
    async def fetch_usage(self, credentials: Credentials) -> UsageData:
        raise NotImplementedError

    @abstractmethod
    def validate_credentials(self, credentials: Credentials) -> bool:
        raise NotImplementedError


def parse_reset(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def fraction_from_percent(value: object) -> float | None:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    return min(1.0, max(0.0, float(value) / 100.0))


def build_usage(name: ProviderName, limits: list[UsageLimit], raw: object | None = None) -> UsageData:
    return UsageData(provider=name, timestamp=datetime.now(timezone.utc), limits=tuple(limits), raw=raw)
