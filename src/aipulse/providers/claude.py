from __future__ import annotations

import logging

import httpx

from aipulse.errors import HttpError, InvalidCredentials, RateLimited, RequestBlocked, SessionExpired
from aipulse.models import Credentials, ProviderName, UsageData, UsageLimit
from aipulse.providers.base import UsageProvider, build_usage, fraction_from_percent, parse_reset

log = logging.getLogger(__name__)

BASE_URL = "https://claude.ai"
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"

# (response key, limit id, label, category); order is the display order
LIMIT_FIELDS = [
    ("five_hour", "five_hour", "Current session", "session"),
    ("seven_day", "seven_day", "Weekly (all models)", "weekly"),
    ("seven_day_opus", "seven_day_opus", "Weekly (Opus)", "weekly"),
    ("seven_day_sonnet", "seven_day_sonnet", "Weekly (Sonnet)", "weekly"),
    ("seven_day_oauth_apps", "seven_day_oauth_apps", "Weekly (OAuth apps)", "weekly"),
]


def has_session_credentials(credentials: Credentials) -> bool:
    return bool((credentials.org_id or "").strip()) and bool((credentials.session_key or "").strip())


class ClaudeProvider(UsageProvider):
    name = ProviderName.CLAUDE
    display_name = "Claude"
    site_url = "https://claude.ai"

    def __init__(self, base_url: str = BASE_URL, timeout: float = 20.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    def validate_credentials(self, credentials: Credentials) -> bool:
        return has_session_credentials(credentials)

    async def fetch_usage(self, credentials: Credentials) -> UsageData:
        if not self.validate_credentials(credentials):
            raise InvalidCredentials("Missing org_id or session_key")

        url = f"{self.base_url}/api/organizations/{credentials.org_id}/usage"
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            "Referer": f"{self.base_url}/settings/usage",
        }
        cookies = {"sessionKey": credentials.session_key or ""}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, cookies=cookies) as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise HttpError(f"Request to Claude timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise HttpError(f"Request to Claude failed: {exc}") from exc

        _raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise HttpError(f"Unexpected response from Claude: {exc}") from exc

        return parse_usage(payload)


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        if "just a moment" in response.text[:2000].lower():
            raise RequestBlocked("cloudflare challenge page")
        return

    log.warning("Claude usage request returned HTTP %s", status)
    if status == 401:
        raise SessionExpired()
    if status == 403:
        raise RequestBlocked()
    if status == 429:
        retry_after = response.headers.get("retry-after")
        raise RateLimited(f"retry after {retry_after}s" if retry_after else "")
    raise HttpError(f"HTTP {status} from Claude")


def parse_usage(payload: object) -> UsageData:
    if not isinstance(payload, dict):
        raise HttpError("Unexpected response from Claude: not an object")

    limits: list[UsageLimit] = []
    for key, limit_id, label, category in LIMIT_FIELDS:
        item = payload.get(key)
        if not isinstance(item, dict):
            continue
        utilization = fraction_from_percent(item.get("utilization"))
        if utilization is None:
            continue
        limits.append(
            UsageLimit(
                id=limit_id,
                label=label,
                utilization=utilization,
                resets_at=parse_reset(item.get("resets_at")),
                category=category,
            )
        )

    if not limits:
        raise HttpError("Unexpected response from Claude: no usage limits present")
    return build_usage(ProviderName.CLAUDE, limits, raw=payload)
