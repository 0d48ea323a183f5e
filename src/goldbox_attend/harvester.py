"""Credential discovery inside pages of the target site.

The harvester looks at the same places the site's own front-end keeps its
login state: ``localStorage``, ``sessionStorage`` and a few framework globals.
Probe lists are plain data so a new site layout only needs another entry.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, Set
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from .logger import debug_detail, get_logger
from .models import Credential, normalize_expiry
from .router import Message, MessageType

LOGGER = get_logger("harvester")

TOKEN_KEYS = (
    "token",
    "access_token",
    "accessToken",
    "auth_token",
    "authToken",
    "jwt",
    "jwtToken",
    "bearer_token",
    "bearerToken",
)

USER_KEYS = ("user", "userInfo", "user_info", "currentUser", "profile", "me")

GLOBAL_STATE_NAMES = ("__INITIAL_STATE__", "__NUXT__", "__NEXT_DATA__", "APP_STATE")

# Fields tried, in order, when a stored token value is itself a JSON object.
STORED_TOKEN_FIELDS = ("token", "access_token", "accessToken", "jwt", "value")
EXPIRY_FIELDS = ("expiry", "exp", "expires_at")

# Fields accepted by the recursive search through global state.
STATE_TOKEN_FIELDS = ("token", "access_token", "accessToken", "jwt", "bearer")
MAX_SEARCH_DEPTH = 5
MIN_TOKEN_LENGTH = 20

WATCHED_KEYS = frozenset(TOKEN_KEYS + USER_KEYS)

LOCAL_STORAGE = "localStorage"
SESSION_STORAGE = "sessionStorage"

Reporter = Callable[[Message], Awaitable[Any]]


@dataclass(frozen=True)
class StorageProbe:
    area: str
    key: str


TOKEN_PROBES = tuple(StorageProbe(LOCAL_STORAGE, key) for key in TOKEN_KEYS) + tuple(
    StorageProbe(SESSION_STORAGE, key) for key in TOKEN_KEYS
)
PROFILE_PROBES = tuple(StorageProbe(LOCAL_STORAGE, key) for key in USER_KEYS)


class PageStorage(Protocol):
    """Read access to a page's client-side state."""

    async def storage_items(self, area: str, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        """Return ``{key: value-or-None}`` for one web storage area."""

    async def global_state(self, name: str) -> Any:
        """Return a JSON-safe copy of ``window[name]`` (None when absent)."""


def parse_token_value(raw: str) -> Optional[Credential]:
    """Turn a stored value into a credential, unwrapping JSON when possible."""
    try:
        parsed = json.loads(raw)
    except ValueError:
        return Credential(token=raw)

    if isinstance(parsed, dict):
        for field_name in STORED_TOKEN_FIELDS:
            value = parsed.get(field_name)
            if isinstance(value, str) and value:
                expiry = next((parsed[f] for f in EXPIRY_FIELDS if parsed.get(f)), None)
                return Credential(token=value, expiry=normalize_expiry(expiry))
        return Credential(token=raw)
    if isinstance(parsed, str):
        return Credential(token=parsed) if parsed else None
    if isinstance(parsed, list):
        return Credential(token=raw)
    # JSON null, booleans and numbers never hold a token
    return None


def find_token_in_object(obj: Any, depth: int = 0) -> Optional[str]:
    """Depth-first search for a long string under a token-like field name."""
    if depth > MAX_SEARCH_DEPTH or not isinstance(obj, (dict, list)) or not obj:
        return None
    items = obj.items() if isinstance(obj, dict) else enumerate(obj)
    for key, value in items:
        if key in STATE_TOKEN_FIELDS and isinstance(value, str) and len(value) > MIN_TOKEN_LENGTH:
            return value
        if isinstance(value, (dict, list)):
            found = find_token_in_object(value, depth + 1)
            if found:
                return found
    return None


class CredentialHarvester:
    """Locate a bearer credential in one page and report it to the requester."""

    def __init__(self, storage: PageStorage, report: Optional[Reporter] = None) -> None:
        self._storage = storage
        self._report = report

    async def discover(self) -> Optional[Credential]:
        for area in (LOCAL_STORAGE, SESSION_STORAGE):
            keys = [probe.key for probe in TOKEN_PROBES if probe.area == area]
            values = await self._storage.storage_items(area, keys)
            for key in keys:
                raw = values.get(key)
                if not raw:
                    continue
                credential = parse_token_value(raw)
                if credential is not None:
                    LOGGER.info("Found token in %s[%s]", area, key)
                    return credential

        for name in GLOBAL_STATE_NAMES:
            state = await self._storage.global_state(name)
            token = find_token_in_object(state)
            if token:
                LOGGER.info("Found token in window.%s", name)
                return Credential(token=token)
        return None

    async def discover_user_profile(self) -> Optional[Dict[str, Any]]:
        keys = [probe.key for probe in PROFILE_PROBES]
        values = await self._storage.storage_items(LOCAL_STORAGE, keys)
        for key in keys:
            raw = values.get(key)
            if not raw:
                continue
            try:
                parsed = json.loads(raw)
            except ValueError:
                continue
            if isinstance(parsed, dict):
                debug_detail(f"User profile found under localStorage[{key}]")
                return parsed
        return None

    async def harvest(self) -> Optional[Credential]:
        """Run a full discovery pass and report whatever was found."""
        credential = await self.discover()
        if credential is None:
            debug_detail("No token found in page storage")
            return None
        profile = await self.discover_user_profile()
        if profile is not None:
            credential.user_profile = profile
        if self._report is not None:
            try:
                await self._report(Message(MessageType.CREDENTIAL_UPDATE, credential.to_payload()))
            except Exception as exc:
                LOGGER.error("Failed to report token: %s", exc)
        return credential


_READ_STORAGE_JS = """
([area, keys]) => {
  const out = {};
  for (const key of keys) {
    try { out[key] = window[area].getItem(key); } catch (e) { out[key] = null; }
  }
  return out;
}
"""

# Copies window[name] into plain JSON, dropping functions and anything deeper
# than the Python-side search can reach.
_READ_GLOBAL_JS = """
(name) => {
  const prune = (value, depth) => {
    if (typeof value === "function") return null;
    if (value === null || typeof value !== "object") return value;
    if (depth > 6) return null;
    if (Array.isArray(value)) return value.map((v) => prune(v, depth + 1));
    const out = {};
    for (const key of Object.keys(value)) {
      try { out[key] = prune(value[key], depth + 1); } catch (e) { out[key] = null; }
    }
    return out;
  };
  return prune(window[name], 0);
}
"""

_BINDING_NAME = "__goldboxStorageChanged"

_WATCH_JS = """
(() => {
  if (window.__goldboxWatchInstalled) return;
  window.__goldboxWatchInstalled = true;
  const watched = new Set(%(keys)s);
  const notify = (key) => {
    if (watched.has(key) && typeof window.%(binding)s === "function") {
      window.%(binding)s(key).catch(() => {});
    }
  };
  window.addEventListener("storage", (event) => notify(event.key));
  try {
    const originalSetItem = window.localStorage.setItem.bind(window.localStorage);
    window.localStorage.setItem = function (key, value) {
      originalSetItem(key, value);
      notify(key);
    };
  } catch (e) {}
})();
""" % {"keys": json.dumps(sorted(WATCHED_KEYS)), "binding": _BINDING_NAME}


class PlaywrightPageStorage:
    """PageStorage backed by ``page.evaluate``."""

    def __init__(self, page: Page) -> None:
        self._page = page

    async def storage_items(self, area: str, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        return await self._page.evaluate(_READ_STORAGE_JS, [area, list(keys)])

    async def global_state(self, name: str) -> Any:
        return await self._page.evaluate(_READ_GLOBAL_JS, name)


class StorageWatcher:
    """Keep harvesting every target-site page of a browser context.

    Three triggers re-run the full discovery: ``storage`` events, same-page
    ``localStorage.setItem`` calls, and a fallback poll.
    """

    def __init__(
        self,
        context: BrowserContext,
        domain: str,
        report: Reporter,
        poll_seconds: float = 30,
    ) -> None:
        self._context = context
        self._domain = domain.lower()
        self._report = report
        self._poll_seconds = poll_seconds
        self._tasks: Set[asyncio.Task] = set()

    async def watch(self) -> None:
        await self._context.expose_binding(_BINDING_NAME, self._on_storage_changed)
        await self._context.add_init_script(_WATCH_JS)
        self._context.on("page", self._track_page)
        for page in self._context.pages:
            try:
                await page.evaluate(_WATCH_JS)
            except PlaywrightError as exc:
                debug_detail(f"Could not install storage hooks on {page.url}: {exc}")
            self._track_page(page)
            self._spawn(self.harvest_page(page, "startup"))
        LOGGER.info("Watching %s pages for token changes (poll every %ss)", self._domain, self._poll_seconds)

    def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _is_target(self, page: Page) -> bool:
        host = (urlparse(page.url).hostname or "").lower()
        return host == self._domain or host.endswith("." + self._domain)

    async def harvest_page(self, page: Page, trigger: str) -> Optional[Credential]:
        if page.is_closed() or not self._is_target(page):
            return None
        debug_detail(f"Token scan ({trigger}) on {page.url}")
        harvester = CredentialHarvester(PlaywrightPageStorage(page), self._report)
        try:
            return await harvester.harvest()
        except PlaywrightError as exc:
            debug_detail(f"Token scan interrupted on {page.url}: {exc}")
            return None

    async def _on_storage_changed(self, source: Dict[str, Any], key: str) -> None:
        LOGGER.info("Storage change detected: %s", key)
        await self.harvest_page(source["page"], f"storage:{key}")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _track_page(self, page: Page) -> None:
        poller = self._spawn(self._poll(page))
        page.on("load", lambda loaded: self._spawn(self.harvest_page(loaded, "load")))
        page.on("close", lambda _closed: poller.cancel())

    async def _poll(self, page: Page) -> None:
        while not page.is_closed():
            await asyncio.sleep(self._poll_seconds)
            await self.harvest_page(page, "poll")
