from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, time, timedelta, timezone
import logging

from aipulse.config import NotificationConfig
from aipulse.events import USAGE_RESET, EventBus
from aipulse.models import ProviderName, UsageData, UsageLimit

log = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]

RESET_WARNING_WINDOW = timedelta(hours=1)
RESET_WARNING_MIN_PERCENT = 75


class NotificationState:
    """Remembers which notifications were already sent so none repeat."""

    def __init__(self) -> None:
        self.sent_thresholds: set[tuple[str, int]] = set()
        self.sent_reset_warnings: set[str] = set()

    def clear_thresholds_above(self, limit_id: str, current_percent: int) -> None:
        self.sent_thresholds = {
            (lid, thresh) for lid, thresh in self.sent_thresholds
            if not (lid == limit_id and thresh > current_percent)
        }

    def clear_limit(self, limit_id: str) -> None:
        self.sent_thresholds = {(lid, t) for lid, t in self.sent_thresholds if lid != limit_id}
        self.sent_reset_warnings.discard(limit_id)


def _parse_hhmm(value: str | None) -> time | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%H:%M").time()
    except ValueError:
        return None


def is_dnd_active(cfg: NotificationConfig, now: time | None = None) -> bool:
    if not cfg.dnd_enabled:
        return False
    start = _parse_hhmm(cfg.dnd_start)
    end = _parse_hhmm(cfg.dnd_end)
    if start is None or end is None:
        return False
    current = now or datetime.now().time()
    if start > end:
        # spans midnight, e.g. 22:00-08:00
        return current >= start or current < end
    return start <= current < end


class NotificationService:
    def __init__(
        self,
        cfg: NotificationConfig,
        notify: Notifier,
        bus: EventBus | None = None,
        state: NotificationState | None = None,
    ) -> None:
        self.cfg = cfg
        self.notify = notify
        self.bus = bus
        self.state = state or NotificationState()

    def on_result(self, provider: ProviderName, previous: UsageData | None, current: UsageData) -> None:
        """Orchestrator result hook."""
        self.process_usage(current, previous)
        for limit in current.limits:
            self.check_upcoming_reset(limit)

    def process_usage(self, usage: UsageData, previous: UsageData | None = None) -> None:
        if not self.cfg.enabled:
            return
        for limit in usage.limits:
            self.state.clear_thresholds_above(limit.id, limit.percent)
            self._check_thresholds(limit)
            if self.cfg.notify_on_reset:
                self._check_reset(limit, previous)

    def check_upcoming_reset(self, limit: UsageLimit, now: datetime | None = None) -> None:
        if not self.cfg.enabled or not self.cfg.notify_on_reset or limit.resets_at is None:
            return
        remaining = limit.resets_at - (now or datetime.now(timezone.utc))
        if (
            timedelta(0) < remaining <= RESET_WARNING_WINDOW
            and limit.percent >= RESET_WARNING_MIN_PERCENT
            and limit.id not in self.state.sent_reset_warnings
        ):
            minutes = int(remaining.total_seconds() // 60)
            body = f"{limit.label} will reset in {minutes} minutes (currently at {limit.percent}%)"
            if self._send("Limit Reset Soon", body):
                self.state.sent_reset_warnings.add(limit.id)

    def send_session_expiry_warning(self) -> None:
        if not self.cfg.enabled or not self.cfg.notify_on_expiry:
            return
        self._send("Session Expiring", "Your session may be expiring soon. Please refresh your credentials.")

    def _check_thresholds(self, limit: UsageLimit) -> None:
        current = limit.percent
        for threshold in self.cfg.thresholds:
            key = (limit.id, threshold)
            if current >= threshold and key not in self.state.sent_thresholds:
                if self._send(f"{threshold}% Usage Alert", f"{limit.label} is at {min(current, 100)}% usage"):
                    self.state.sent_thresholds.add(key)

    def _check_reset(self, limit: UsageLimit, previous: UsageData | None) -> None:
        if previous is None:
            return
        prev_limit = next((item for item in previous.limits if item.id == limit.id), None)
        if prev_limit is None:
            return
        prev_percent = prev_limit.percent
        if prev_percent >= 50 and limit.percent < max(0, prev_percent - 40):
            self._send("Usage Reset", f"{limit.label} has reset! Now at {limit.percent}%")
            self.state.clear_limit(limit.id)
            if self.bus is not None:
                self.bus.emit(USAGE_RESET, limit.id)
            log.info("sent reset notification for %s", limit.id)

    def _send(self, title: str, body: str) -> bool:
        if is_dnd_active(self.cfg):
            log.debug("notification suppressed (DND active): %s - %s", title, body)
            return False
        try:
            self.notify(title, body)
        except Exception:
            log.exception("failed to send notification: %s", title)
            return False
        log.debug("notification sent: %s - %s", title, body)
        return True
