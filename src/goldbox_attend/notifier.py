"""Desktop notifications."""

from __future__ import annotations

from plyer import notification

from .logger import get_logger

LOGGER = get_logger("notifier")

APP_NAME = "GoldboxAttend"
TITLE_PREFIX = f"[{APP_NAME}]"


class DesktopNotifier:
    def __init__(self, enabled: bool = True, timeout: int = 10) -> None:
        self.enabled = enabled
        self.timeout = timeout

    def notify(self, title: str, message: str) -> None:
        full_title = f"{TITLE_PREFIX} {title}"
        LOGGER.info("%s: %s", full_title, message)
        if not self.enabled:
            return
        try:
            notification.notify(title=full_title, message=message, app_name=APP_NAME, timeout=self.timeout)
        except Exception as exc:  # plyer raises backend-specific errors
            LOGGER.warning("Desktop notification unavailable: %s", exc)
