"""Self-update lifecycle: check, download, install, relaunch.

::

    idle --check--> checking --> available | up_to_date | error
    available --download_and_install--> downloading --> ready | error
    checking --cancelled--> error
    downloading --cancelled--> available
    error --check--> checking
    ready --relaunch--> process restart

The controller only sequences states; talking to the package index and
replacing the installation is the :class:`UpdateGateway`'s job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import replace
from importlib import metadata
import asyncio
import logging
import os
import re
from pathlib import Path
import subprocess
import sys
import tempfile

import httpx

from aipulse.errors import UpdateError
from aipulse.models import (
    DownloadEvent,
    DownloadFinished,
    DownloadProgress,
    DownloadStarted,
    UpdateSnapshot,
    UpdateStatus,
)

log = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadEvent], None]
UpdateListener = Callable[[UpdateSnapshot], None]

RELAUNCH_FAILED = "Failed to restart the application"
CHECK_CANCELLED = "Update check was cancelled"


class UpdateInfo(ABC):
    version: str

    @abstractmethod
    async def download_and_install(self, on_event: ProgressCallback) -> None:
        raise NotImplementedError


class UpdateGateway(ABC):
    @abstractmethod
    async def check_for_update(self) -> UpdateInfo | None:
        raise NotImplementedError

    @abstractmethod
    async def relaunch(self) -> None:
        raise NotImplementedError


class UpdateController:
    def __init__(self, gateway: UpdateGateway) -> None:
        self.gateway = gateway
        self.state = UpdateSnapshot()
        self._update: UpdateInfo | None = None
        self._listeners: list[UpdateListener] = []

    @property
    def status(self) -> UpdateStatus:
        return self.state.status

    def subscribe(self, listener: UpdateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def check_for_updates(self) -> None:
        if self.status in (UpdateStatus.CHECKING, UpdateStatus.DOWNLOADING):
            log.debug("update check ignored while %s", self.status.value)
            return
        self._set(status=UpdateStatus.CHECKING, error=None)
        try:
            update = await self.gateway.check_for_update()
        except asyncio.CancelledError:
            log.info("update check cancelled")
            self._set(status=UpdateStatus.ERROR, error=CHECK_CANCELLED)
            raise
        except Exception as exc:
            log.error("Failed to check for updates: %s", exc)
            self._set(status=UpdateStatus.ERROR, error=str(exc) or "Failed to check for updates")
            return

        if update is None:
            log.info("no update available")
            self._set(status=UpdateStatus.UP_TO_DATE)
            return
        log.info("update available: %s", update.version)
        self._update = update
        self._set(status=UpdateStatus.AVAILABLE, update_version=update.version)

    async def download_and_install(self) -> None:
        if self._update is None or self.status is not UpdateStatus.AVAILABLE:
            log.debug("download requested without an available update")
            return

        self._set(status=UpdateStatus.DOWNLOADING, download_progress=0)
        total = 0
        downloaded = 0

        def on_event(event: DownloadEvent) -> None:
            nonlocal total, downloaded
            if isinstance(event, DownloadStarted):
                total = event.content_length or 0
            elif isinstance(event, DownloadProgress):
                downloaded += event.chunk_length
                if total > 0:
                    self._set(download_progress=round(downloaded / total * 100))
            elif isinstance(event, DownloadFinished):
                self._set(download_progress=100)

        try:
            await self._update.download_and_install(on_event)
        except asyncio.CancelledError:
            # release is still available
            log.info("update download cancelled")
            self._set(status=UpdateStatus.AVAILABLE, download_progress=0)
            raise
        except Exception as exc:
            log.error("Failed to download update: %s", exc)
            self._set(status=UpdateStatus.ERROR, error=str(exc) or "Failed to download update")
            return
        log.info("update %s installed; restart to apply", self.state.update_version)
        self._set(status=UpdateStatus.READY)

    async def relaunch(self) -> None:
        if self.status is not UpdateStatus.READY:
            return
        try:
            await self.gateway.relaunch()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("Failed to relaunch: %s", exc)
            self._set(error=RELAUNCH_FAILED)

    async def advance(self) -> None:
        """Run whichever step the current state offers (the single update button)."""
        actions: dict[UpdateStatus, Callable[[], Awaitable[None]]] = {
            UpdateStatus.IDLE: self.check_for_updates,
            UpdateStatus.UP_TO_DATE: self.check_for_updates,
            UpdateStatus.ERROR: self.check_for_updates,
            UpdateStatus.AVAILABLE: self.download_and_install,
            UpdateStatus.READY: self.relaunch,
        }
        action = actions.get(self.status)
        if action is not None:
            await action()

    def _set(self, **changes: object) -> None:
        new_state = replace(self.state, **changes)
        if new_state == self.state:
            return
        self.state = new_state
        for listener in list(self._listeners):
            listener(new_state)


def installed_version(dist: str = "aipulse") -> str:
    try:
        return metadata.version(dist)
    except metadata.PackageNotFoundError:
        return "0.0.0"


# pre-release phases rank below the final release of the same number
_PRE_PHASES = {"a": 0, "alpha": 0, "b": 1, "beta": 1, "c": 2, "rc": 2, "pre": 2, "preview": 2}
_FINAL = (3, 0)
_VERSION_RE = re.compile(r"^v?(?P<release>\d+(?:\.\d+)*)(?:[-_.]?(?P<phase>[a-z]+)[-_.]?(?P<num>\d*))?", re.IGNORECASE)


def _version_key(version: str) -> tuple[tuple[int, ...], tuple[int, int]]:
    match = _VERSION_RE.match(version.strip())
    if match is None:
        return (0,), _FINAL
    release = [int(part) for part in match.group("release").split(".")]
    while len(release) > 1 and release[-1] == 0:
        release.pop()
    phase = (match.group("phase") or "").lower()
    if phase in _PRE_PHASES:
        pre = (_PRE_PHASES[phase], int(match.group("num") or 0))
    else:
        # post and dev tags are treated as the release itself
        pre = _FINAL
    return tuple(release), pre


def is_newer(candidate: str, current: str) -> bool:
    return _version_key(candidate) > _version_key(current)


class PyPIRelease(UpdateInfo):
    def __init__(
        self,
        version: str,
        url: str,
        filename: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.version = version
        self.url = url
        self.filename = filename
        self.timeout = timeout
        self.transport = transport

    async def download_and_install(self, on_event: ProgressCallback) -> None:
        with tempfile.TemporaryDirectory(prefix="aipulse-update-") as workdir:
            target = Path(workdir) / self.filename
            await self._download(target, on_event)
            on_event(DownloadFinished())
            await self._install(target)

    async def _download(self, target: Path, on_event: ProgressCallback) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, transport=self.transport) as client:
                async with client.stream("GET", self.url) as response:
                    response.raise_for_status()
                    length = response.headers.get("content-length")
                    on_event(DownloadStarted(content_length=int(length) if length else None))
                    with target.open("wb") as fh:
                        async for chunk in response.aiter_bytes():
                            fh.write(chunk)
                            on_event(DownloadProgress(chunk_length=len(chunk)))
        except httpx.HTTPError as exc:
            raise UpdateError(f"Failed to download update: {exc}") from exc

    async def _install(self, wheel: Path) -> None:
        log.info("installing %s", wheel)
        proc = await asyncio.to_thread(
            subprocess.run,
            [sys.executable, "-m", "pip", "install", "--upgrade", str(wheel)],
            capture_output=True,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            raise UpdateError(f"Failed to install update: {proc.stderr.strip()[-500:]}")


class PyPIUpdateGateway(UpdateGateway):
    def __init__(
        self,
        index_url: str,
        current_version: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.index_url = index_url
        self.current_version = current_version or installed_version()
        self.timeout = timeout
        self.transport = transport

    async def check_for_update(self) -> UpdateInfo | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.index_url)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpdateError(f"Failed to check for updates: {exc}") from exc

        latest = (payload.get("info") or {}).get("version")
        if not latest or not is_newer(latest, self.current_version):
            return None
        for item in payload.get("urls") or []:
            if item.get("packagetype") == "bdist_wheel":
                return PyPIRelease(latest, item["url"], item["filename"], transport=self.transport)
        raise UpdateError(f"Release {latest} has no wheel to install")

    async def relaunch(self) -> None:
        log.info("relaunching %s", sys.argv)
        os.execv(sys.executable, [sys.executable, *sys.argv])
