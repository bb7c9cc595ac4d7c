import asyncio

import httpx
import pytest

from aipulse.errors import HttpError, InvalidCredentials, RateLimited, RequestBlocked, SessionExpired
from aipulse.models import Credentials, ProviderName
from aipulse.providers.claude import ClaudeProvider, parse_usage

CREDS = Credentials(org_id="org-123", session_key="sk-ant-secret")

SAMPLE = {
    "five_hour": {"utilization": 34.5, "resets_at": "2030-01-01T05:00:00Z"},
    "seven_day": {"utilization": 58, "resets_at": "2030-01-07T00:00:00+00:00"},
    "seven_day_opus": None,
    "seven_day_sonnet": {"utilization": 120, "resets_at": None},
}


def _provider(handler) -> ClaudeProvider:
    return ClaudeProvider(base_url="https://claude.test", transport=httpx.MockTransport(handler))


def test_fetch_parses_usage_and_sends_session_cookie() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=SAMPLE)

    usage = asyncio.run(_provider(handler).fetch_usage(CREDS))

    assert seen[0].url.path == "/api/organizations/org-123/usage"
    assert "sessionKey=sk-ant-secret" in seen[0].headers["cookie"]
    assert usage.provider is ProviderName.CLAUDE
    assert [limit.id for limit in usage.limits] == ["five_hour", "seven_day", "seven_day_sonnet"]
    session, weekly, sonnet = usage.limits
    assert session.utilization == pytest.approx(0.345)
    assert session.label == "Current session"
    assert session.resets_at is not None and session.resets_at.hour == 5
    assert weekly.percent == 58
    assert sonnet.utilization == 1.0
    assert sonnet.resets_at is None


@pytest.mark.parametrize(
    ("status", "error"),
    [(401, SessionExpired), (403, RequestBlocked), (429, RateLimited), (500, HttpError)],
)
def test_http_errors_are_mapped(status: int, error: type) -> None:
    provider = _provider(lambda request: httpx.Response(status, text="nope"))
    with pytest.raises(error):
        asyncio.run(provider.fetch_usage(CREDS))


def test_expired_session_message_is_recognisable() -> None:
    provider = _provider(lambda request: httpx.Response(401))
    with pytest.raises(SessionExpired, match="401"):
        asyncio.run(provider.fetch_usage(CREDS))


def test_cloudflare_challenge_page_is_blocked() -> None:
    provider = _provider(lambda request: httpx.Response(200, text="<html><title>Just a moment...</title></html>"))
    with pytest.raises(RequestBlocked):
        asyncio.run(provider.fetch_usage(CREDS))


def test_network_failure_becomes_http_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(HttpError, match="failed"):
        asyncio.run(_provider(handler).fetch_usage(CREDS))


def test_missing_session_key_is_rejected_before_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(InvalidCredentials):
        asyncio.run(_provider(handler).fetch_usage(Credentials(org_id="org-123")))


def test_payload_without_limits_is_an_error() -> None:
    with pytest.raises(HttpError):
        parse_usage({"five_hour": None})
    with pytest.raises(HttpError):
        parse_usage(["not", "an", "object"])
