"""Command line entry point for goldbox-attend."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .browser import BrowserConfig, BrowserController, PageRefresher
from .client import AttendanceClient
from .config import Settings, load_settings
from .harvester import StorageWatcher
from .logger import logger, set_log_profile, step, success
from .models import DELAY_RANGE, PERIOD_RANGE
from .notifier import DesktopNotifier
from .requester import AttendanceRequester
from .router import MessageType
from .scheduler import AlarmScheduler
from .service import AttendanceService
from .store import JsonStore


def build_service(settings: Settings, controller: Optional[BrowserController] = None) -> AttendanceService:
    """Wire store, requester and scheduler; the browser is optional."""
    store = JsonStore(settings.state_file)
    notifier = DesktopNotifier(enabled=settings.notifications)
    refresher = PageRefresher(controller, settings.site_url, settings.refresh_wait_ms) if controller else None
    requester = AttendanceRequester(
        store,
        AttendanceClient(settings.attendance_url),
        settings.site_url,
        refresher=refresher,
        cookies=controller,
        notifier=notifier,
        patterns=settings.already_done_patterns,
    )
    return AttendanceService(store, requester, AlarmScheduler(), notifier=notifier)


def _browser_config(settings: Settings, headed: bool = False) -> BrowserConfig:
    return BrowserConfig(
        name=settings.browser,
        channel=settings.browser_channel,
        headed=headed or not settings.headless,
        storage_state=settings.storage_state,
    )


async def _run_daemon(settings: Settings) -> None:
    async with BrowserController(_browser_config(settings)) as controller:
        service = build_service(settings, controller)
        watcher = StorageWatcher(
            controller.context,
            settings.target_domain,
            service.router.dispatch,
            poll_seconds=settings.token_poll_seconds,
        )
        await watcher.watch()
        reason = service.start()
        success(f"Daemon running ({reason}); press Ctrl+C to stop")
        try:
            await asyncio.Event().wait()
        finally:
            watcher.stop()
            service.scheduler.clear_all()
            await service.scheduler.drain()


async def _run_check(settings: Settings) -> Dict[str, Any]:
    async with BrowserController(_browser_config(settings)) as controller:
        service = build_service(settings, controller)
        watcher = StorageWatcher(controller.context, settings.target_domain, service.router.dispatch)
        await watcher.watch()
        try:
            return await service.router.send(MessageType.MANUAL_ATTENDANCE)
        finally:
            watcher.stop()


async def _run_login(settings: Settings) -> bool:
    async with BrowserController(_browser_config(settings, headed=True)) as controller:
        service = build_service(settings, controller)
        watcher = StorageWatcher(controller.context, settings.target_domain, service.router.dispatch)
        await watcher.watch()
        page = await controller.context.new_page()
        try:
            await page.goto(settings.login_url)
            logger.info("Log in in the opened browser window, then press Enter here…")
            await asyncio.to_thread(input)
            await watcher.harvest_page(page, "login")
        finally:
            watcher.stop()
        status = await service.router.send(MessageType.GET_STATUS)
        return bool(status["has_token"])


async def _send(settings: Settings, message_type: MessageType, **data: Any) -> Dict[str, Any]:
    service = build_service(settings)
    return await service.router.send(message_type, **data)


def _ranged(lo: int, hi: int):
    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
        if not lo <= number <= hi:
            raise argparse.ArgumentTypeError(f"must be between {lo} and {hi}")
        return number

    return parse


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_logs(logs: List[Dict[str, Any]]) -> None:
    if not logs:
        print("No attendance history yet.")
        return
    for entry in logs:
        mark = "OK  " if entry.get("success") else "FAIL"
        print(f"{entry.get('last_attempt_readable', '?')}  {mark}  {entry.get('message', '')}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="goldbox-attend",
        description="Daily goldbox attendance check using a token harvested from the site",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the background daemon (alarm + token watcher)")
    sub.add_parser("check", help="Run one attendance check now")
    sub.add_parser("login", help="Open a browser to log in and capture the token")
    sub.add_parser("status", help="Show token and last-result status")

    settings_parser = sub.add_parser("settings", help="Show or change the alarm schedule")
    settings_parser.add_argument("--delay", type=_ranged(*DELAY_RANGE), help="Minutes before the first run (1-60)")
    settings_parser.add_argument("--period", type=_ranged(*PERIOD_RANGE), help="Minutes between runs (1-1440)")

    logs_parser = sub.add_parser("logs", help="Show attendance history")
    logs_parser.add_argument("--clear", action="store_true", help="Delete the history")

    sub.add_parser("reset", help="Delete token, history and settings")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        set_log_profile("debug")
    settings = load_settings()

    if args.command == "run":
        step(f"Starting goldbox-attend {__version__} for {settings.target_domain}")
        try:
            asyncio.run(_run_daemon(settings))
        except KeyboardInterrupt:
            logger.info("Stopped by user")
        return 0

    if args.command == "check":
        result = asyncio.run(_run_check(settings))
        _print_json(result)
        return 0 if result.get("success") else 1

    if args.command == "login":
        if asyncio.run(_run_login(settings)):
            success("Token captured and session saved")
            return 0
        logger.error("No token was found after login")
        return 1

    if args.command == "status":
        _print_json(asyncio.run(_send(settings, MessageType.GET_STATUS)))
        return 0

    if args.command == "settings":
        if args.delay is None and args.period is None:
            _print_json(asyncio.run(_send(settings, MessageType.GET_SETTINGS)))
            return 0
        current = asyncio.run(_send(settings, MessageType.GET_SETTINGS))
        response = asyncio.run(
            _send(
                settings,
                MessageType.SAVE_SETTINGS,
                delay_minutes=args.delay if args.delay is not None else current["delay_minutes"],
                period_minutes=args.period if args.period is not None else current["period_minutes"],
            )
        )
        _print_json(response)
        return 0 if response.get("success") else 1

    if args.command == "logs":
        if args.clear:
            _print_json(asyncio.run(_send(settings, MessageType.CLEAR_LOGS)))
        else:
            _print_logs(asyncio.run(_send(settings, MessageType.GET_LOGS))["logs"])
        return 0

    if args.command == "reset":
        _print_json(asyncio.run(_send(settings, MessageType.RESET_ALL)))
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
