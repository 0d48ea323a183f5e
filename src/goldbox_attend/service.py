"""Background service: persisted state, the alarm and the message handlers."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from . import __version__
from .logger import get_logger, step
from .models import ScheduleConfig, display_name, normalize_expiry
from .requester import AttendanceRequester, Notifier
from .router import Message, MessageRouter, MessageType
from .scheduler import ATTENDANCE_ALARM, AlarmScheduler
from .store import (
    EXPIRY_KEY,
    HISTORY_KEY,
    TOKEN_KEY,
    TOKEN_UPDATED_KEY,
    USER_INFO_KEY,
    USER_NAME_KEY,
    VERSION_KEY,
    JsonStore,
    load_schedule,
    save_schedule,
)

LOGGER = get_logger("service")


class AttendanceService:
    """Answer router messages and keep the attendance alarm armed."""

    def __init__(
        self,
        store: JsonStore,
        requester: AttendanceRequester,
        scheduler: AlarmScheduler,
        notifier: Optional[Notifier] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.requester = requester
        self.scheduler = scheduler
        self.notifier = notifier
        self.router = MessageRouter()
        self._today = today

        handlers = {
            MessageType.CREDENTIAL_UPDATE: self._on_credential_update,
            MessageType.MANUAL_ATTENDANCE: self._on_manual_attendance,
            MessageType.GET_STATUS: self._on_get_status,
            MessageType.GET_SETTINGS: self._on_get_settings,
            MessageType.SAVE_SETTINGS: self._on_save_settings,
            MessageType.GET_LOGS: self._on_get_logs,
            MessageType.CLEAR_LOGS: self._on_clear_logs,
            MessageType.RESET_ALL: self._on_reset_all,
        }
        for message_type, handler in handlers.items():
            self.router.register(message_type, handler)

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> str:
        """Arm the alarm for this process; returns install, update or startup."""
        installed = self.store.get(VERSION_KEY)
        if installed is None:
            reason = "install"
        elif installed != __version__:
            reason = "update"
        else:
            reason = "startup"

        if reason == "startup":
            self.on_startup()
        else:
            self.on_installed(reason)
            self.store.set({VERSION_KEY: __version__})
        return reason

    def on_installed(self, reason: str) -> None:
        step(f"goldbox-attend {reason} ({__version__})")
        self.arm_alarm(load_schedule(self.store))
        if reason == "install" and self.notifier is not None:
            self.notifier.notify("Installed", "Visit the site and log in so a token can be collected.")

    def on_startup(self) -> None:
        if self.scheduler.get(ATTENDANCE_ALARM) is None:
            self.arm_alarm(load_schedule(self.store))
            LOGGER.info("Attendance alarm re-armed on startup")

    def arm_alarm(self, config: ScheduleConfig) -> None:
        self.scheduler.clear(ATTENDANCE_ALARM)
        self.scheduler.create(
            ATTENDANCE_ALARM,
            config.initial_delay_minutes,
            config.period_minutes,
            self.requester.send_attendance,
        )

    # ------------------------------------------------------------------
    # Handlers

    async def _on_credential_update(self, message: Message) -> Dict[str, Any]:
        data = message.data
        token = data.get("token")
        if not token:
            LOGGER.warning("Ignoring token update without a token")
            return {"success": False, "error": "missing token"}

        values: Dict[str, Any] = {
            TOKEN_KEY: token,
            EXPIRY_KEY: normalize_expiry(data.get("expiry")),
            TOKEN_UPDATED_KEY: datetime.now().isoformat(timespec="seconds"),
        }
        user_info = data.get("user_info")
        if isinstance(user_info, dict):
            values[USER_NAME_KEY] = display_name(user_info)
            values[USER_INFO_KEY] = user_info
            LOGGER.info("Token received for user %s", values[USER_NAME_KEY] or "(unknown)")
        else:
            LOGGER.info("Token received")
        self.store.set(values)
        return {"success": True}

    async def _on_manual_attendance(self, message: Message) -> Dict[str, Any]:
        LOGGER.info("Manual attendance check requested")
        result = await self.requester.send_attendance()
        return result.to_response()

    async def _on_get_status(self, message: Message) -> Dict[str, Any]:
        data = self.store.get_many(
            [TOKEN_KEY, USER_NAME_KEY, "last_attempt", "last_success", "success", "today_checked"]
        )
        return {
            "has_token": bool(data[TOKEN_KEY]),
            "user_name": data[USER_NAME_KEY],
            "last_attempt": data["last_attempt"],
            "last_success": data["last_success"],
            "last_result": data["success"],
            "today_checked": data["today_checked"] == self._today().isoformat(),
        }

    async def _on_get_settings(self, message: Message) -> Dict[str, Any]:
        config = load_schedule(self.store)
        return {"delay_minutes": config.initial_delay_minutes, "period_minutes": config.period_minutes}

    async def _on_save_settings(self, message: Message) -> Dict[str, Any]:
        try:
            config = ScheduleConfig(
                initial_delay_minutes=int(message.data["delay_minutes"]),
                period_minutes=int(message.data["period_minutes"]),
            )
            config.validate()
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.error("Rejected schedule settings: %s", exc)
            return {"success": False, "error": str(exc)}
        save_schedule(self.store, config)
        self.arm_alarm(config)
        return {"success": True}

    async def _on_get_logs(self, message: Message) -> Dict[str, Any]:
        return {"logs": self.store.get(HISTORY_KEY) or []}

    async def _on_clear_logs(self, message: Message) -> Dict[str, Any]:
        self.store.remove([HISTORY_KEY])
        LOGGER.info("Attendance history cleared")
        return {"success": True}

    async def _on_reset_all(self, message: Message) -> Dict[str, Any]:
        self.store.clear()
        self.store.set({VERSION_KEY: __version__})
        self.arm_alarm(ScheduleConfig())
        LOGGER.info("All state reset to defaults")
        return {"success": True}
