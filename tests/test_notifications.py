import asyncio
from datetime import datetime, time, timedelta, timezone

from conftest import make_usage

from aipulse.config import NotificationConfig
from aipulse.events import USAGE_RESET, EventBus
from aipulse.models import ProviderName, UsageLimit
from aipulse.notifications import NotificationService, is_dnd_active


def _service(**overrides):
    sent = []
    cfg = NotificationConfig(**overrides)
    return NotificationService(cfg, lambda title, body: sent.append((title, body))), sent


def test_threshold_alerts_sent_once() -> None:
    service, sent = _service()
    usage = make_usage(ProviderName.CLAUDE, 0.80)
    service.process_usage(usage)
    service.process_usage(usage)
    assert [title for title, _ in sent] == ["50% Usage Alert", "75% Usage Alert"]


def test_threshold_rearms_after_usage_drops() -> None:
    service, sent = _service(thresholds=[50])
    service.process_usage(make_usage(ProviderName.CLAUDE, 0.60))
    service.process_usage(make_usage(ProviderName.CLAUDE, 0.40))
    service.process_usage(make_usage(ProviderName.CLAUDE, 0.55))
    assert [title for title, _ in sent] == ["50% Usage Alert", "50% Usage Alert"]


def test_disabled_notifications_send_nothing() -> None:
    service, sent = _service(enabled=False)
    service.process_usage(make_usage(ProviderName.CLAUDE, 1.0))
    assert sent == []


def test_reset_detected_and_signalled() -> None:
    received = []

    async def run():
        bus = EventBus()
        bus.subscribe(USAGE_RESET, received.append)
        service, sent = _service(thresholds=[])
        service.bus = bus
        service.process_usage(make_usage(ProviderName.CLAUDE, 0.05), previous=make_usage(ProviderName.CLAUDE, 0.90))
        await asyncio.sleep(0)
        return sent

    sent = asyncio.run(run())
    assert sent == [("Usage Reset", "five hour has reset! Now at 5%")]
    assert received == ["five_hour"]


def test_small_drop_is_not_a_reset() -> None:
    service, sent = _service(thresholds=[])
    service.process_usage(make_usage(ProviderName.CLAUDE, 0.60), previous=make_usage(ProviderName.CLAUDE, 0.80))
    assert sent == []


def test_upcoming_reset_warning_once() -> None:
    service, sent = _service()
    now = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
    limit = UsageLimit(id="five_hour", label="Current session", utilization=0.8, resets_at=now + timedelta(minutes=30))
    service.check_upcoming_reset(limit, now=now)
    service.check_upcoming_reset(limit, now=now)
    assert sent == [("Limit Reset Soon", "Current session will reset in 30 minutes (currently at 80%)")]


def test_upcoming_reset_ignored_for_low_usage_or_far_reset() -> None:
    service, sent = _service()
    now = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
    service.check_upcoming_reset(UsageLimit("a", "A", 0.5, now + timedelta(minutes=30)), now=now)
    service.check_upcoming_reset(UsageLimit("b", "B", 0.9, now + timedelta(hours=3)), now=now)
    assert sent == []


def test_dnd_window_same_day_and_overnight() -> None:
    day = NotificationConfig(dnd_enabled=True, dnd_start="09:00", dnd_end="17:00")
    assert is_dnd_active(day, time(12, 0))
    assert not is_dnd_active(day, time(18, 0))

    night = NotificationConfig(dnd_enabled=True, dnd_start="22:00", dnd_end="08:00")
    assert is_dnd_active(night, time(23, 30))
    assert is_dnd_active(night, time(7, 59))
    assert not is_dnd_active(night, time(8, 0))

    assert not is_dnd_active(NotificationConfig(dnd_enabled=False, dnd_start="00:00", dnd_end="23:59"), time(12, 0))
    assert not is_dnd_active(NotificationConfig(dnd_enabled=True, dnd_start="bogus", dnd_end="08:00"), time(1, 0))


def test_session_expiry_warning_respects_setting() -> None:
    service, sent = _service(notify_on_expiry=False)
    service.send_session_expiry_warning()
    assert sent == []
    service, sent = _service()
    service.send_session_expiry_warning()
    assert [title for title, _ in sent] == ["Session Expiring"]
