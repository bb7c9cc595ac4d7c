from __future__ import annotations

import argparse
import asyncio
import json
import platform
from dataclasses import asdict

from rich.console import Console

from aipulse.banner import BannerState
from aipulse.config import CONFIG_PATH, Config, load_config, save_config, set_config_value
from aipulse.context import AppContext, build_context
from aipulse.credentials import CREDENTIALS_PATH
from aipulse.errors import AIPulseError
from aipulse.log import configure_logging
from aipulse.models import Credentials, ProviderName, UpdateStatus
from aipulse.snapshot import snapshot_to_json, store_snapshot, write_snapshot_file
from aipulse.ui.render import render_entry
from aipulse.updater import installed_version

PROVIDER_CHOICES = [p.value for p in ProviderName]


def _mask(value: str | None) -> str:
    if not value:
        return "-"
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:6]}…{value[-4:]}"


async def _refresh_once(ctx: AppContext, providers: list[ProviderName]) -> None:
    ctx.orchestrator.start(providers)
    await ctx.orchestrator.drain()


def _selected(cfg: Config, choice: str) -> list[ProviderName]:
    if choice == "all":
        return cfg.enabled_providers()
    return [ProviderName(choice)]


def _cmd_panel(cfg: Config, console: Console, choice: str) -> None:
    ctx = build_context(cfg)
    providers = _selected(cfg, choice)
    asyncio.run(_refresh_once(ctx, providers))
    write_snapshot_file(cfg, store_snapshot(ctx.store, providers))
    for provider in providers:
        entry = ctx.store.get(provider)
        console.print(render_entry(provider.value, entry, BannerState().observe(entry.error)))


def _cmd_snapshot(cfg: Config) -> None:
    ctx = build_context(cfg)
    providers = cfg.enabled_providers()
    asyncio.run(_refresh_once(ctx, providers))
    snapshot = store_snapshot(ctx.store, providers)
    write_snapshot_file(cfg, snapshot)
    print(snapshot_to_json(snapshot))


def _cmd_credentials(cfg: Config, console: Console, args: argparse.Namespace) -> int:
    ctx = build_context(cfg)
    provider = ProviderName(args.provider)
    if args.credentials_cmd == "show":
        creds = asyncio.run(ctx.gateway.get_credentials(provider))
        if creds is None:
            console.print(f"no credentials stored for {provider.value}")
            return 1
        console.print(f"org_id:      {creds.org_id or '-'}")
        console.print(f"session_key: {_mask(creds.session_key)}")
        console.print(f"api_key:     {_mask(creds.api_key)}")
        return 0
    if args.credentials_cmd == "set":
        creds = Credentials(org_id=args.org_id, session_key=args.session_key, api_key=args.api_key)
        asyncio.run(ctx.gateway.save_credentials(provider, creds))
        console.print(f"Credentials saved for {provider.value}")
        return 0
    if args.credentials_cmd == "delete":
        asyncio.run(ctx.gateway.delete_credentials(provider))
        console.print(f"Credentials deleted for {provider.value}")
        return 0
    if args.credentials_cmd == "test":
        candidate = None
        if args.org_id or args.session_key or args.api_key:
            candidate = Credentials(org_id=args.org_id, session_key=args.session_key, api_key=args.api_key)
        result = asyncio.run(ctx.gateway.check_connection(provider, candidate))
        if result.success:
            console.print(f"[green]Connection to {provider.value} OK[/]")
            return 0
        console.print(f"[red]{result.error_code}: {result.error_message}[/]")
        if result.hint:
            console.print(result.hint)
        return 1
    return 2


def _cmd_update(cfg: Config, console: Console, install: bool) -> int:
    ctx = build_context(cfg)
    updates = ctx.updates

    def on_state(state) -> None:
        if state.status is UpdateStatus.DOWNLOADING:
            console.print(f"downloading… {state.download_progress}%", end="\r")

    updates.subscribe(on_state)

    async def run() -> None:
        await updates.check_for_updates()
        if install and updates.status is UpdateStatus.AVAILABLE:
            await updates.download_and_install()

    asyncio.run(run())
    state = updates.state
    messages = {
        UpdateStatus.UP_TO_DATE: f"You're up to date! (v{installed_version()})",
        UpdateStatus.AVAILABLE: f"Update available: v{state.update_version} (run `aipulse update install`)",
        UpdateStatus.READY: f"Update v{state.update_version} installed; restart to apply",
        UpdateStatus.ERROR: f"Update failed: {state.error}",
    }
    console.print(messages.get(state.status, state.status.value))
    return 1 if state.status is UpdateStatus.ERROR else 0


def main() -> None:
    parser = argparse.ArgumentParser(prog="aipulse")
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("dashboard")

    panel = sub.add_parser("panel")
    panel.add_argument("--provider", choices=["all", *PROVIDER_CHOICES], default="all")

    snap_cmd = sub.add_parser("snapshot")
    snap_cmd.add_argument("--format", choices=["json"], default="json")

    sub.add_parser("health")

    config = sub.add_parser("config")
    config_sub = config.add_subparsers(dest="config_cmd")
    config_sub.add_parser("show")
    config_set = config_sub.add_parser("set")
    config_set.add_argument("key")
    config_set.add_argument("value")

    creds = sub.add_parser("credentials")
    creds_sub = creds.add_subparsers(dest="credentials_cmd")
    for name in ("show", "set", "delete", "test"):
        p = creds_sub.add_parser(name)
        p.add_argument("--provider", choices=PROVIDER_CHOICES, default=ProviderName.CLAUDE.value)
        if name in {"set", "test"}:
            p.add_argument("--org-id")
            p.add_argument("--session-key")
            p.add_argument("--api-key")

    update = sub.add_parser("update")
    update_sub = update.add_subparsers(dest="update_cmd")
    update_sub.add_parser("check")
    update_sub.add_parser("install")

    tray = sub.add_parser("tray")
    tray_sub = tray.add_subparsers(dest="tray_cmd")
    tray_sub.add_parser("run")

    args = parser.parse_args()
    cfg = load_config()

    cmd = args.cmd or "dashboard"
    console = Console()
    configure_logging(cfg.general.log_level, cfg.general.log_file, console=cmd in {"panel", "update"})

    if cmd == "dashboard":
        from aipulse.app import run_dashboard

        run_dashboard(cfg)
        return

    if cmd == "panel":
        _cmd_panel(cfg, console, args.provider)
        return

    if cmd == "snapshot":
        _cmd_snapshot(cfg)
        return

    if cmd == "health":
        checks = {
            "config": str(CONFIG_PATH),
            "credentials": str(CREDENTIALS_PATH),
            "credentials_present": CREDENTIALS_PATH.exists(),
            "log_file": cfg.general.log_file,
            "state_file": cfg.general.state_file,
            "version": installed_version(),
            "platform": platform.platform(),
        }
        print(json.dumps(checks, indent=2))
        return

    if cmd == "config":
        if args.config_cmd == "show":
            print(json.dumps(asdict(cfg), indent=2, default=str))
            return
        if args.config_cmd == "set":
            try:
                set_config_value(cfg, args.key, args.value)
            except ValueError as exc:
                parser.error(str(exc))
            save_config(cfg)
            print(f"updated {args.key}")
            return
        parser.error("config requires show or set")

    if cmd == "credentials":
        if args.credentials_cmd is None:
            parser.error("credentials requires show, set, delete or test")
        try:
            code = _cmd_credentials(cfg, console, args)
        except AIPulseError as exc:
            console.print(f"[red]{exc}[/]")
            raise SystemExit(1)
        raise SystemExit(code)

    if cmd == "update":
        if args.update_cmd not in {"check", "install"}:
            parser.error("update requires check or install")
        raise SystemExit(_cmd_update(cfg, console, install=args.update_cmd == "install"))

    if cmd == "tray":
        if args.tray_cmd != "run":
            parser.error("tray requires run")
        if not cfg.tray.enabled:
            console.print("tray is disabled; enable it with `aipulse config set tray.enabled true`")
            raise SystemExit(1)
        from aipulse.tray.icon import run_tray

        run_tray(cfg)
        return

    parser.error("unknown command")


if __name__ == "__main__":
    main()
