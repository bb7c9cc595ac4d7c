from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
import logging
import os
import tomllib

import tomli_w

from aipulse.errors import CredentialStoreError
from aipulse.models import Credentials, ProviderName
from aipulse.providers.claude import has_session_credentials

log = logging.getLogger(__name__)

CREDENTIALS_PATH = Path.home() / ".config/aipulse/credentials.toml"


VALIDATORS = {
    ProviderName.CLAUDE: has_session_credentials,
}


class CredentialStore:
    """Credentials persisted per provider in a private TOML file."""

    def __init__(self, path: Path = CREDENTIALS_PATH) -> None:
        self.path = path

    def get(self, provider: ProviderName) -> Credentials | None:
        raw = self._load().get(provider.value)
        if not raw:
            return None
        creds = Credentials(org_id=raw.get("org_id"), session_key=raw.get("session_key"), api_key=raw.get("api_key"))
        return None if creds.is_empty() else creds

    def exists(self, provider: ProviderName) -> bool:
        return self.get(provider) is not None

    def save(self, provider: ProviderName, credentials: Credentials) -> None:
        log.info("Saving credentials for provider: %s", provider.value)
        validator = VALIDATORS.get(provider)
        if validator is not None and not validator(credentials):
            raise CredentialStoreError("Invalid credentials format")

        data = self._load()
        data[provider.value] = {k: v.strip() for k, v in asdict(credentials).items() if v}
        self._write(data)

    def delete(self, provider: ProviderName) -> None:
        log.info("Deleting credentials for provider: %s", provider.value)
        data = self._load()
        if data.pop(provider.value, None) is not None:
            self._write(data)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return tomllib.loads(self.path.read_text())
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise CredentialStoreError(f"unable to read {self.path}: {exc}") from exc

    def _write(self, data: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            # O_CREAT mode does not apply to a file that already exists
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(tomli_w.dumps(data))
        except OSError as exc:
            raise CredentialStoreError(f"unable to write {self.path}: {exc}") from exc
