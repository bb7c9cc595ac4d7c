from __future__ import annotations


class AIPulseError(Exception):
    pass


class ProviderError(AIPulseError):
    pass


class MissingCredentials(ProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Missing credentials for provider: {provider}")
        self.provider = provider


class InvalidCredentials(ProviderError):
    pass


class SessionExpired(ProviderError):
    def __init__(self, detail: str = "") -> None:
        message = "Session expired (401 Unauthorized)"
        super().__init__(f"{message}: {detail}" if detail else message)


class RequestBlocked(ProviderError):
    def __init__(self, detail: str = "") -> None:
        message = "Request blocked by Cloudflare (403)"
        super().__init__(f"{message}: {detail}" if detail else message)


class RateLimited(ProviderError):
    def __init__(self, detail: str = "") -> None:
        message = "Rate limit exceeded (429)"
        super().__init__(f"{message}: {detail}" if detail else message)


class HttpError(ProviderError):
    pass


class ProviderUnavailable(ProviderError):
    pass


class CredentialStoreError(AIPulseError):
    pass


class UpdateError(AIPulseError):
    pass
