from __future__ import annotations

from aipulse.errors import ProviderUnavailable
from aipulse.models import Credentials, ProviderName, UsageData
from aipulse.providers.base import UsageProvider


class CodexProvider(UsageProvider):
    name = ProviderName.CODEX
    display_name = "Codex"
    site_url = "https://chatgpt.com"

    async def fetch_usage(self, credentials: Credentials) -> UsageData:
        raise ProviderUnavailable("Codex provider not yet implemented")

    def validate_credentials(self, credentials: Credentials) -> bool:
        return not credentials.is_empty()
