"""Backend gateway: the command surface the refresh core talks to.

``BackendGateway`` is the interface; ``LocalGateway`` implements it in-process
on top of the credential file and the provider adapters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import logging

from aipulse.credentials import CredentialStore
from aipulse.errors import (
    HttpError,
    InvalidCredentials,
    MissingCredentials,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    RequestBlocked,
    SessionExpired,
)
from aipulse.models import ConnectionTestResult, Credentials, ProviderName, UsageData
from aipulse.providers import ClaudeProvider, CodexProvider
from aipulse.providers.base import UsageProvider

log = logging.getLogger(__name__)


class BackendGateway(ABC):
    @abstractmethod
    async def fetch_usage(self, provider: ProviderName) -> UsageData:
        raise NotImplementedError

    @abstractmethod
    async def has_credentials(self, provider: ProviderName) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def get_credentials(self, provider: ProviderName) -> Credentials | None:
        raise NotImplementedError

    @abstractmethod
    async def save_credentials(self, provider: ProviderName, credentials: Credentials) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_credentials(self, provider: ProviderName) -> None:
        raise NotImplementedError

    @abstractmethod
    async def check_connection(self, provider: ProviderName, credentials: Credentials | None = None) -> ConnectionTestResult:
        raise NotImplementedError


# (error type, code, hint); the first matching type wins
CONNECTION_HINTS: list[tuple[type[ProviderError], str, str]] = [
    (SessionExpired, "SESSION_EXPIRED", "The session key has expired. Copy a fresh sessionKey cookie from the provider's site."),
    (RequestBlocked, "BLOCKED", "The request was blocked by Cloudflare. Wait a few minutes and try again."),
    (RateLimited, "RATE_LIMITED", "Too many requests. Wait a moment before testing again."),
    (MissingCredentials, "NO_CREDENTIALS", "Save credentials first with `aipulse credentials set` or in Settings."),
    (InvalidCredentials, "INVALID_FORMAT", "Please ensure both Organization ID and Session Key are provided."),
    (ProviderUnavailable, "PROVIDER_UNAVAILABLE", "This provider is currently blocked or not supported."),
    (HttpError, "NETWORK_ERROR", "Check your connection and that the Organization ID is correct."),
]


def connection_error_result(exc: ProviderError) -> ConnectionTestResult:
    for error_type, code, hint in CONNECTION_HINTS:
        if isinstance(exc, error_type):
            return ConnectionTestResult(success=False, error_code=code, error_message=str(exc), hint=hint)
    return ConnectionTestResult(success=False, error_code="UNKNOWN", error_message=str(exc))


async def check_connection(adapter: UsageProvider, credentials: Credentials) -> ConnectionTestResult:
    """Validate the format, then try one real fetch with ``credentials``."""
    if not adapter.validate_credentials(credentials):
        return ConnectionTestResult(
            success=False,
            error_code="INVALID_FORMAT",
            error_message="Credentials format is invalid",
            hint="Please ensure both Organization ID and Session Key are provided.",
        )
    try:
        await adapter.fetch_usage(credentials)
    except ProviderError as exc:
        log.info("connection test for %s failed: %s", adapter.name.value, exc)
        return connection_error_result(exc)
    return ConnectionTestResult(success=True)


def default_providers() -> dict[ProviderName, UsageProvider]:
    return {ProviderName.CLAUDE: ClaudeProvider(), ProviderName.CODEX: CodexProvider()}


class LocalGateway(BackendGateway):
    def __init__(self, credentials: CredentialStore, providers: dict[ProviderName, UsageProvider] | None = None) -> None:
        self.credentials = credentials
        self.providers = providers if providers is not None else default_providers()

    async def fetch_usage(self, provider: ProviderName) -> UsageData:
        log.info("Fetching usage for provider: %s", provider.value)
        creds = await self.get_credentials(provider)
        if creds is None:
            raise MissingCredentials(provider.value)

        adapter = self.providers.get(provider)
        if adapter is None:
            raise ProviderUnavailable(f"Unknown provider: {provider.value}")
        if not adapter.validate_credentials(creds):
            raise InvalidCredentials("Missing org_id or session_key")
        return await adapter.fetch_usage(creds)

    async def has_credentials(self, provider: ProviderName) -> bool:
        return await asyncio.to_thread(self.credentials.exists, provider)

    async def get_credentials(self, provider: ProviderName) -> Credentials | None:
        return await asyncio.to_thread(self.credentials.get, provider)

    async def save_credentials(self, provider: ProviderName, credentials: Credentials) -> None:
        await asyncio.to_thread(self.credentials.save, provider, credentials)

    async def delete_credentials(self, provider: ProviderName) -> None:
        await asyncio.to_thread(self.credentials.delete, provider)

    async def check_connection(self, provider: ProviderName, credentials: Credentials | None = None) -> ConnectionTestResult:
        """Test ``credentials``, or the stored ones when none are given, without touching the store."""
        log.info("Testing connection for provider: %s", provider.value)
        adapter = self.providers.get(provider)
        if adapter is None:
            return ConnectionTestResult(
                success=False,
                error_code="PROVIDER_UNAVAILABLE",
                error_message=f"Provider '{provider.value}' is not available",
                hint="This provider is currently blocked or not supported.",
            )
        if credentials is None:
            credentials = await self.get_credentials(provider)
        if credentials is None:
            return connection_error_result(MissingCredentials(provider.value))
        return await check_connection(adapter, credentials)
