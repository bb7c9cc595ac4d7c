from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import tomllib
import tomli_w

from aipulse.models import ProviderName


HOME = Path.home()
CONFIG_PATH = HOME / ".config/aipulse/config.toml"

REFRESH_MODES = ("adaptive", "fixed")
REFRESH_INTERVALS = (60, 180, 300, 600)
DEFAULT_THRESHOLDS = [50, 75, 90, 100]
DEFAULT_INDEX_URL = "https://pypi.org/pypi/aipulse/json"


@dataclass
class AppConfig:
    refresh_mode: str = "adaptive"
    refresh_seconds: int = 300
    active_provider: str = ProviderName.CLAUDE.value
    retain_stale_on_error: bool = True
    log_level: str = "INFO"
    log_file: str = str(HOME / ".local/state/aipulse/aipulse.log")
    state_file: str = str(HOME / ".local/state/aipulse/latest.json")


@dataclass
class TrayConfig:
    enabled: bool = True


@dataclass
class NotificationConfig:
    enabled: bool = True
    thresholds: list[int] = field(default_factory=lambda: list(DEFAULT_THRESHOLDS))
    notify_on_reset: bool = True
    notify_on_expiry: bool = True
    dnd_enabled: bool = False
    dnd_start: str | None = None
    dnd_end: str | None = None


@dataclass
class UpdateConfig:
    check_on_startup: bool = False
    index_url: str = DEFAULT_INDEX_URL


@dataclass
class ProviderConfig:
    enabled: bool = True


@dataclass
class Config:
    general: AppConfig = field(default_factory=AppConfig)
    tray: TrayConfig = field(default_factory=TrayConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    updates: UpdateConfig = field(default_factory=UpdateConfig)
    providers: dict[str, ProviderConfig] = field(
        default_factory=lambda: {
            "claude": ProviderConfig(enabled=True),
            "codex": ProviderConfig(enabled=False),
        }
    )

    def enabled_providers(self) -> list[ProviderName]:
        return [ProviderName(name) for name, pc in self.providers.items() if pc.enabled]

    def active_provider(self) -> ProviderName:
        return ProviderName(self.general.active_provider)


def _check_interval(value: int) -> int:
    if value not in REFRESH_INTERVALS:
        raise ValueError(f"refresh_seconds must be one of {REFRESH_INTERVALS}, got {value}")
    return value


def _check_mode(value: str) -> str:
    if value not in REFRESH_MODES:
        raise ValueError(f"refresh_mode must be one of {REFRESH_MODES}, got {value!r}")
    return value


def _check_provider(value: str) -> str:
    return ProviderName(value).value


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_hhmm(value: str) -> str:
    hours, _, minutes = value.partition(":")
    if not (hours.isdigit() and minutes.isdigit() and 0 <= int(hours) < 24 and 0 <= int(minutes) < 60):
        raise ValueError(f"expected HH:MM, got {value!r}")
    return f"{int(hours):02d}:{int(minutes):02d}"


def load_config(path: Path = CONFIG_PATH) -> Config:
    if not path.exists():
        cfg = Config()
        save_config(cfg, path)
        return cfg

    raw = tomllib.loads(path.read_text())
    general_raw = raw.get("general", {})
    tray_raw = raw.get("tray", {})
    notif_raw = raw.get("notifications", {})
    updates_raw = raw.get("updates", {})
    providers_raw = raw.get("providers", {})
    defaults = AppConfig()

    cfg = Config(
        general=AppConfig(
            refresh_mode=_check_mode(general_raw.get("refresh_mode", defaults.refresh_mode)),
            refresh_seconds=_check_interval(int(general_raw.get("refresh_seconds", defaults.refresh_seconds))),
            active_provider=_check_provider(general_raw.get("active_provider", defaults.active_provider)),
            retain_stale_on_error=bool(general_raw.get("retain_stale_on_error", True)),
            log_level=str(general_raw.get("log_level", defaults.log_level)).upper(),
            log_file=general_raw.get("log_file", defaults.log_file),
            state_file=general_raw.get("state_file", defaults.state_file),
        ),
        tray=TrayConfig(
            enabled=bool(tray_raw.get("enabled", True)),
        ),
        notifications=NotificationConfig(
            enabled=bool(notif_raw.get("enabled", True)),
            thresholds=sorted(int(t) for t in notif_raw.get("thresholds", DEFAULT_THRESHOLDS)),
            notify_on_reset=bool(notif_raw.get("notify_on_reset", True)),
            notify_on_expiry=bool(notif_raw.get("notify_on_expiry", True)),
            dnd_enabled=bool(notif_raw.get("dnd_enabled", False)),
            dnd_start=notif_raw.get("dnd_start"),
            dnd_end=notif_raw.get("dnd_end"),
        ),
        updates=UpdateConfig(
            check_on_startup=bool(updates_raw.get("check_on_startup", False)),
            index_url=updates_raw.get("index_url", DEFAULT_INDEX_URL),
        ),
        providers={
            "claude": ProviderConfig(enabled=bool(providers_raw.get("claude", {}).get("enabled", True))),
            "codex": ProviderConfig(enabled=bool(providers_raw.get("codex", {}).get("enabled", False))),
        },
    )
    return cfg


def save_config(cfg: Config, path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    notifications: dict[str, object] = {
        "enabled": cfg.notifications.enabled,
        "thresholds": cfg.notifications.thresholds,
        "notify_on_reset": cfg.notifications.notify_on_reset,
        "notify_on_expiry": cfg.notifications.notify_on_expiry,
        "dnd_enabled": cfg.notifications.dnd_enabled,
    }
    # TOML has no null
    if cfg.notifications.dnd_start is not None:
        notifications["dnd_start"] = cfg.notifications.dnd_start
    if cfg.notifications.dnd_end is not None:
        notifications["dnd_end"] = cfg.notifications.dnd_end

    payload = {
        "general": {
            "refresh_mode": cfg.general.refresh_mode,
            "refresh_seconds": cfg.general.refresh_seconds,
            "active_provider": cfg.general.active_provider,
            "retain_stale_on_error": cfg.general.retain_stale_on_error,
            "log_level": cfg.general.log_level,
            "log_file": cfg.general.log_file,
            "state_file": cfg.general.state_file,
        },
        "tray": {
            "enabled": cfg.tray.enabled,
        },
        "notifications": notifications,
        "updates": {
            "check_on_startup": cfg.updates.check_on_startup,
            "index_url": cfg.updates.index_url,
        },
        "providers": {name: {"enabled": pc.enabled} for name, pc in cfg.providers.items()},
    }
    path.write_text(tomli_w.dumps(payload))


def set_config_value(cfg: Config, dotted_key: str, value: str) -> None:
    if dotted_key == "general.refresh_mode":
        cfg.general.refresh_mode = _check_mode(value)
        return
    if dotted_key == "general.refresh_seconds":
        cfg.general.refresh_seconds = _check_interval(int(value))
        return
    if dotted_key == "general.active_provider":
        cfg.general.active_provider = _check_provider(value)
        return
    if dotted_key == "general.retain_stale_on_error":
        cfg.general.retain_stale_on_error = _parse_bool(value)
        return
    if dotted_key == "general.log_level":
        cfg.general.log_level = value.upper()
        return
    if dotted_key == "notifications.thresholds":
        cfg.notifications.thresholds = sorted(int(t) for t in value.split(",") if t.strip())
        return
    if dotted_key in {"notifications.dnd_start", "notifications.dnd_end"}:
        setattr(cfg.notifications, dotted_key.split(".")[1], _parse_hhmm(value))
        return
    if dotted_key in {
        "notifications.enabled",
        "notifications.notify_on_reset",
        "notifications.notify_on_expiry",
        "notifications.dnd_enabled",
    }:
        setattr(cfg.notifications, dotted_key.split(".")[1], _parse_bool(value))
        return
    if dotted_key == "tray.enabled":
        cfg.tray.enabled = _parse_bool(value)
        return
    if dotted_key == "updates.check_on_startup":
        cfg.updates.check_on_startup = _parse_bool(value)
        return

    keys = dotted_key.split(".")
    if len(keys) == 3 and keys[0] == "providers" and keys[2] == "enabled":
        provider = keys[1]
        if provider not in cfg.providers:
            raise ValueError(f"unknown provider: {provider}")
        cfg.providers[provider].enabled = _parse_bool(value)
        return
    raise ValueError(f"unsupported key: {dotted_key}")
