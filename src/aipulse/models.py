from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ProviderName(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"


class UpdateStatus(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    AVAILABLE = "available"
    DOWNLOADING = "downloading"
    READY = "ready"
    UP_TO_DATE = "up_to_date"
    ERROR = "error"


@dataclass(frozen=True)
class UsageLimit:
    id: str
    label: str
    utilization: float
    resets_at: datetime | None = None
    category: str | None = None

    @property
    def percent(self) -> int:
        return int(round(self.utilization * 100, 6))


@dataclass(frozen=True)
class UsageData:
    provider: ProviderName
    timestamp: datetime
    limits: tuple[UsageLimit, ...] = ()
    raw: object | None = None

    def max_utilization(self) -> float | None:
        if not self.limits:
            return None
        return max(limit.utilization for limit in self.limits)


@dataclass(frozen=True)
class UsageStoreEntry:
    usage: UsageData | None = None
    loading: bool = False
    error: str | None = None
    last_refresh: datetime | None = None


@dataclass(frozen=True)
class UsageHistoryEntry:
    provider: ProviderName
    timestamp: datetime
    limits: tuple[UsageLimit, ...]


@dataclass
class Credentials:
    org_id: str | None = None
    session_key: str | None = None
    api_key: str | None = None

    def is_empty(self) -> bool:
        return not (self.org_id or self.session_key or self.api_key)


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    error_code: str | None = None
    error_message: str | None = None
    hint: str | None = None


@dataclass(frozen=True)
class DownloadStarted:
    content_length: int | None = None


@dataclass(frozen=True)
class DownloadProgress:
    chunk_length: int


@dataclass(frozen=True)
class DownloadFinished:
    pass


DownloadEvent = DownloadStarted | DownloadProgress | DownloadFinished


@dataclass
class UpdateSnapshot:
    status: UpdateStatus = UpdateStatus.IDLE
    update_version: str = ""
    download_progress: int = 0
    error: str | None = None
