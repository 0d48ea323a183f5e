"""Playwright browser lifecycle, session reuse and the background refresh page."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from .logger import debug_detail, get_logger

LOGGER = get_logger("browser")


def is_storage_state_effective(path: Path) -> bool:
    """Return True if a Playwright storage_state file has cookies/origins."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return False
    return bool(data.get("cookies") or data.get("origins"))


@dataclass
class BrowserConfig:
    name: str = "chromium"
    channel: Optional[str] = None
    headed: bool = False
    storage_state: Optional[Path] = None
    timeout_ms: int = 60000


class BrowserController:
    """Own one browser and one context for the lifetime of the daemon.

    The context is restored from ``storage_state`` when that file holds a
    session and written back on exit, so cookies and web storage survive
    restarts.
    """

    def __init__(self, config: BrowserConfig) -> None:
        self.config = config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("Browser is not started")
        return self._context

    async def __aenter__(self) -> "BrowserController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        browser_type = getattr(self._playwright, self.config.name)
        launch_kwargs: Dict[str, Any] = {"headless": not self.config.headed}
        if self.config.name == "chromium" and self.config.channel:
            launch_kwargs["channel"] = self.config.channel
        try:
            self._browser = await browser_type.launch(**launch_kwargs)
        except PlaywrightError as exc:
            if "channel" not in launch_kwargs:
                raise
            LOGGER.warning("Failed to launch with channel '%s': %s. Falling back to default.", self.config.channel, exc)
            launch_kwargs.pop("channel")
            self._browser = await browser_type.launch(**launch_kwargs)

        context_kwargs: Dict[str, Any] = {}
        state = self.config.storage_state
        if state and is_storage_state_effective(state):
            context_kwargs["storage_state"] = str(state)
            LOGGER.info("Reusing browser session from %s", state)
        self._context = await self._browser.new_context(**context_kwargs)
        self._context.set_default_timeout(self.config.timeout_ms)

    async def save_storage_state(self) -> None:
        path = self.config.storage_state
        if path is None or self._context is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self._context.storage_state(path=str(path))
            debug_detail(f"Saved storage state to {path}")
        except PlaywrightError as exc:
            LOGGER.warning("Failed to save storage state: %s", exc)

    async def close(self) -> None:
        try:
            if self._context is not None:
                await self.save_storage_state()
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._context = None
            self._browser = None
            self._playwright = None

    async def cookies_for(self, url: str) -> Dict[str, str]:
        try:
            cookies = await self.context.cookies(url)
        except PlaywrightError as exc:
            LOGGER.warning("Could not read cookies for %s: %s", url, exc)
            return {}
        return {cookie["name"]: cookie["value"] for cookie in cookies}

    async def open_background_page(self, url: str) -> Page:
        page = await self.context.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded")
        except PlaywrightError as exc:
            LOGGER.warning("Background page did not finish loading %s: %s", url, exc)
        return page


class PageRefresher:
    """Open the site in a background page so the harvester can report a token."""

    def __init__(self, controller: BrowserController, url: str, wait_ms: int = 5000) -> None:
        self._controller = controller
        self._url = url
        self._wait_ms = wait_ms

    async def refresh(self) -> None:
        try:
            page = await self._controller.open_background_page(self._url)
        except (PlaywrightError, RuntimeError) as exc:
            LOGGER.error("Token refresh page could not be opened: %s", exc)
            return
        LOGGER.info("Opened token refresh page %s", self._url)
        try:
            await asyncio.sleep(self._wait_ms / 1000)
        finally:
            try:
                await page.close()
                debug_detail("Token refresh page closed")
            except PlaywrightError:
                debug_detail("Token refresh page was already closed")
        await self._controller.save_storage_state()
