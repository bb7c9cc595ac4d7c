from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from aipulse.gateway import BackendGateway
from aipulse.models import ConnectionTestResult, Credentials, ProviderName, UsageData, UsageLimit
from aipulse.updater import UpdateGateway, UpdateInfo


def make_usage(provider: ProviderName = ProviderName.CLAUDE, *utilizations: float) -> UsageData:
    values = utilizations or (0.25,)
    ids = ["five_hour", "seven_day", "seven_day_opus"]
    limits = tuple(
        UsageLimit(id=ids[i], label=ids[i].replace("_", " "), utilization=u, resets_at=datetime(2030, 1, 1, tzinfo=timezone.utc))
        for i, u in enumerate(values)
    )
    return UsageData(provider=provider, timestamp=datetime.now(timezone.utc), limits=limits)


class FakeGateway(BackendGateway):
    """In-memory gateway; set ``hold`` to keep fetches pending until ``release``."""

    def __init__(self, has_creds: bool = True) -> None:
        self.has_creds = has_creds
        self.results: list[UsageData | Exception] = []
        self.fetch_calls: list[ProviderName] = []
        self.credential_checks = 0
        self.hold = False
        self._gate: asyncio.Event | None = None
        self.saved: dict[ProviderName, Credentials] = {}

    def release(self) -> None:
        self.hold = False
        if self._gate is not None:
            self._gate.set()

    async def fetch_usage(self, provider: ProviderName) -> UsageData:
        self.fetch_calls.append(provider)
        if self.hold:
            self._gate = asyncio.Event()
            await self._gate.wait()
        result = self.results.pop(0) if self.results else make_usage(provider)
        if isinstance(result, Exception):
            raise result
        return result

    async def has_credentials(self, provider: ProviderName) -> bool:
        self.credential_checks += 1
        return self.has_creds

    async def get_credentials(self, provider: ProviderName) -> Credentials | None:
        return self.saved.get(provider)

    async def save_credentials(self, provider: ProviderName, credentials: Credentials) -> None:
        self.saved[provider] = credentials
        self.has_creds = True

    async def delete_credentials(self, provider: ProviderName) -> None:
        self.saved.pop(provider, None)
        self.has_creds = False

    async def check_connection(self, provider: ProviderName, credentials: Credentials | None = None) -> ConnectionTestResult:
        return ConnectionTestResult(success=self.has_creds or credentials is not None)


class FakeRelease(UpdateInfo):
    def __init__(self, version: str, events: list, fail: Exception | None = None) -> None:
        self.version = version
        self.events = events
        self.fail = fail

    async def download_and_install(self, on_event) -> None:
        for event in self.events:
            on_event(event)
        if self.fail is not None:
            raise self.fail


class FakeUpdateGateway(UpdateGateway):
    def __init__(self, release: UpdateInfo | None = None, check_error: Exception | None = None) -> None:
        self.release = release
        self.check_error = check_error
        self.relaunch_error: Exception | None = None
        self.relaunched = 0

    async def check_for_update(self) -> UpdateInfo | None:
        if self.check_error is not None:
            raise self.check_error
        return self.release

    async def relaunch(self) -> None:
        if self.relaunch_error is not None:
            raise self.relaunch_error
        self.relaunched += 1
