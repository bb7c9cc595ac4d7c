"""Maps raw refresh errors onto actionable banner categories.

Upstream error text is not under our control, so matching is plain
case-insensitive substring search over a fixed, ordered rule table. The
first matching category wins; the substrings overlap (``"Session Expired:
403"``), so the order of ``RULES`` is part of the behaviour.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BannerCategory(str, Enum):
    EXPIRED = "expired"
    BLOCKED = "blocked"
    RATE_LIMITED = "rate_limited"
    NO_CREDENTIALS = "no_credentials"


class BannerAction(str, Enum):
    OPEN_PROVIDER_SITE = "open_provider_site"
    OPEN_SETTINGS = "open_settings"
    RETRY = "retry"


RULES: list[tuple[BannerCategory, tuple[str, ...]]] = [
    (BannerCategory.EXPIRED, ("session expired", "sessionexpired", "401", "unauthorized")),
    (BannerCategory.BLOCKED, ("cloudflare", "blocked", "403")),
    (BannerCategory.RATE_LIMITED, ("rate limit", "429")),
    (BannerCategory.NO_CREDENTIALS, ("no credentials", "missing credentials")),
]


@dataclass(frozen=True)
class BannerSpec:
    category: BannerCategory
    title: str
    message: str
    actions: tuple[BannerAction, ...]
    color: str


BANNERS: dict[BannerCategory, BannerSpec] = {
    BannerCategory.EXPIRED: BannerSpec(
        category=BannerCategory.EXPIRED,
        title="Session Expired",
        message="Your session has expired. Please get a fresh session key from the provider's site.",
        actions=(BannerAction.OPEN_PROVIDER_SITE, BannerAction.OPEN_SETTINGS),
        color="yellow",
    ),
    BannerCategory.BLOCKED: BannerSpec(
        category=BannerCategory.BLOCKED,
        title="Request Blocked",
        message="Your request was blocked by Cloudflare. This is usually temporary - try again in a few minutes.",
        actions=(BannerAction.OPEN_SETTINGS, BannerAction.RETRY),
        color="dark_orange",
    ),
    BannerCategory.RATE_LIMITED: BannerSpec(
        category=BannerCategory.RATE_LIMITED,
        title="Rate Limited",
        message="Too many requests. Please wait a moment before trying again.",
        actions=(BannerAction.OPEN_SETTINGS, BannerAction.RETRY),
        color="blue",
    ),
    BannerCategory.NO_CREDENTIALS: BannerSpec(
        category=BannerCategory.NO_CREDENTIALS,
        title="Credentials Missing",
        message="Please configure your credentials in Settings.",
        actions=(BannerAction.OPEN_SETTINGS,),
        color="red",
    ),
}


def classify(error: str | None) -> BannerCategory | None:
    if not error:
        return None
    lowered = error.lower()
    for category, needles in RULES:
        if any(needle in lowered for needle in needles):
            return category
    return None


class BannerState:
    """Dismissal binding for the banner of one provider.

    ``dismissed`` resets whenever the raw error string changes, not the
    category: two different errors in the same category are dismissed
    independently.
    """

    def __init__(self) -> None:
        self.dismissed = False
        self._last_error: str | None = None

    def observe(self, error: str | None) -> BannerSpec | None:
        if error != self._last_error:
            self.dismissed = False
            self._last_error = error
        if self.dismissed:
            return None
        category = classify(error)
        return BANNERS[category] if category is not None else None

    def dismiss(self) -> None:
        self.dismissed = True
