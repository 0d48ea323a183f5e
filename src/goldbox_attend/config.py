"""Environment-driven configuration for goldbox-attend.

Settings are read from the process environment after loading a ``.env`` file
with python-dotenv. Values already present in the environment win over the
file, so CI or a service manager can override anything.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from .logger import get_logger

LOGGER = get_logger("config")

DEFAULT_TARGET_DOMAIN = "ggm.gondr.net"
DEFAULT_ATTENDANCE_PATH = "/api/town/goldbox/attendance"
DEFAULT_LOGIN_PATH = "/"

# Case-insensitive substrings that mark an HTTP 400 as "already checked in".
DEFAULT_ALREADY_DONE_PATTERNS: Tuple[str, ...] = (
    "이미",
    "완료",
    "하셨습니다",
    "already",
    "done",
    "exist",
    "duplicate",
)

ENV_TEMPLATE = """
# Target site (host only, https is implied)
TARGET_DOMAIN="ggm.gondr.net"

# Page opened by `goldbox-attend login` (path on the target site)
LOGIN_PATH="/"

# Persisted state (credential, schedule, history)
STATE_FILE=".goldbox_state.json"

# Playwright session (cookies + web storage) reused between runs
STORAGE_STATE="storage_state.json"

# Browser engine and optional system channel (chrome, msedge)
BROWSER="chromium"
BROWSER_CHANNEL=""

# Headless browser? 1=true (headless), 0=false (headed)
HEADLESS=1

# How long the background page may take to surface a token (ms)
REFRESH_WAIT_MS=5000

# Desktop notifications? 1=on, 0=off
NOTIFICATIONS=1
""".lstrip()


def ensure_env_file(path: Path) -> None:
    """Create a minimal .env file if missing (no overwrite)."""
    if path.exists():
        return
    try:
        path.write_text(ENV_TEMPLATE, encoding="utf-8")
        LOGGER.info("Created default .env at %s; please review it.", path)
    except OSError as exc:
        LOGGER.warning("Unable to create %s: %s", path, exc)


def getenv_bool(name: str, default: bool = False) -> bool:
    """Return True for 1/true/yes/on (case-insensitive), else default."""
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


def getenv_int(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        LOGGER.warning("Ignoring non-integer %s; using %s", name, default)
        return default
    return max(value, minimum)


def _patterns_from_env() -> Tuple[str, ...]:
    raw = os.getenv("ALREADY_DONE_PATTERNS")
    if not raw:
        return DEFAULT_ALREADY_DONE_PATTERNS
    patterns = tuple(p.strip() for p in raw.split(",") if p.strip())
    return patterns or DEFAULT_ALREADY_DONE_PATTERNS


@dataclass(frozen=True)
class Settings:
    target_domain: str = DEFAULT_TARGET_DOMAIN
    attendance_path: str = DEFAULT_ATTENDANCE_PATH
    login_path: str = DEFAULT_LOGIN_PATH
    state_file: Path = Path(".goldbox_state.json")
    storage_state: Path = Path("storage_state.json")
    browser: str = "chromium"
    browser_channel: Optional[str] = None
    headless: bool = True
    refresh_wait_ms: int = 5000
    token_poll_seconds: int = 30
    already_done_patterns: Tuple[str, ...] = field(default=DEFAULT_ALREADY_DONE_PATTERNS)
    notifications: bool = True

    @property
    def site_url(self) -> str:
        return f"https://{self.target_domain}"

    @property
    def attendance_url(self) -> str:
        return self.site_url + self.attendance_path

    @property
    def login_url(self) -> str:
        return self.site_url + self.login_path


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Load settings from ``.env`` (created from a template when missing)."""
    path = env_file or Path(os.getenv("ENV_FILE", ".env"))
    ensure_env_file(path)
    load_dotenv(dotenv_path=path, override=False)

    channel = (os.getenv("BROWSER_CHANNEL") or "").strip() or None
    return Settings(
        target_domain=(os.getenv("TARGET_DOMAIN") or DEFAULT_TARGET_DOMAIN).strip(),
        attendance_path=os.getenv("ATTENDANCE_PATH") or DEFAULT_ATTENDANCE_PATH,
        login_path=os.getenv("LOGIN_PATH") or DEFAULT_LOGIN_PATH,
        state_file=Path(os.getenv("STATE_FILE") or ".goldbox_state.json"),
        storage_state=Path(os.getenv("STORAGE_STATE") or "storage_state.json"),
        browser=os.getenv("BROWSER") or "chromium",
        browser_channel=channel,
        headless=getenv_bool("HEADLESS", True),
        refresh_wait_ms=getenv_int("REFRESH_WAIT_MS", 5000),
        token_poll_seconds=getenv_int("TOKEN_POLL_SECONDS", 30, minimum=1),
        already_done_patterns=_patterns_from_env(),
        notifications=getenv_bool("NOTIFICATIONS", True),
    )
