"""Domain objects shared by the harvester and the requester."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

# Epoch values above this are JavaScript milliseconds, below are JWT seconds.
_MILLISECOND_THRESHOLD = 10**12

DELAY_RANGE = (1, 60)
PERIOD_RANGE = (1, 1440)


def normalize_expiry(value: Any) -> Optional[float]:
    """Return an expiry as epoch seconds, or None when it cannot be read."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        return value / 1000.0 if value >= _MILLISECOND_THRESHOLD else float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return normalize_expiry(float(text))
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


def display_name(profile: Optional[Dict[str, Any]]) -> Optional[str]:
    if not profile:
        return None
    for key in ("name", "username", "id"):
        value = profile.get(key)
        if value not in (None, ""):
            return str(value)
    return None


@dataclass
class Credential:
    """Bearer token harvested from the target site."""

    token: str
    expiry: Optional[float] = None
    user_profile: Optional[Dict[str, Any]] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expiry is None:
            return False
        return (now if now is not None else time.time()) > self.expiry

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"token": self.token, "expiry": self.expiry}
        if self.user_profile is not None:
            payload["user_info"] = self.user_profile
        return payload


@dataclass(frozen=True)
class AttendanceResult:
    """One attendance attempt, as stored in the history log."""

    attempt_timestamp: str
    attempt_readable: str
    success: bool
    message: str
    already_completed_today: Optional[bool] = None
    success_timestamp: Optional[str] = None
    success_readable: Optional[str] = None
    today: Optional[str] = None

    @classmethod
    def create(
        cls,
        success: bool,
        message: str,
        already_completed: bool = False,
        now: Optional[datetime] = None,
    ) -> "AttendanceResult":
        moment = now or datetime.now()
        iso = moment.isoformat(timespec="seconds")
        readable = moment.strftime("%Y-%m-%d %H:%M:%S")
        if not success:
            return cls(attempt_timestamp=iso, attempt_readable=readable, success=False, message=message)
        return cls(
            attempt_timestamp=iso,
            attempt_readable=readable,
            success=True,
            message=message,
            already_completed_today=already_completed,
            success_timestamp=iso,
            success_readable=readable,
            today=moment.strftime("%Y-%m-%d"),
        )

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "last_attempt": self.attempt_timestamp,
            "last_attempt_readable": self.attempt_readable,
            "success": self.success,
            "message": self.message,
        }
        if self.success:
            record["last_success"] = self.success_timestamp
            record["last_success_readable"] = self.success_readable
            record["today_checked"] = self.today
            record["already_checked_today"] = bool(self.already_completed_today)
        return record


@dataclass
class ScheduleConfig:
    initial_delay_minutes: int = 1
    period_minutes: int = 60

    def validate(self) -> None:
        lo, hi = DELAY_RANGE
        if not lo <= self.initial_delay_minutes <= hi:
            raise ValueError(f"Initial delay must be between {lo} and {hi} minutes")
        lo, hi = PERIOD_RANGE
        if not lo <= self.period_minutes <= hi:
            raise ValueError(f"Period must be between {lo} and {hi} minutes")


@dataclass
class RoutineResult:
    """Outcome handed back to whoever triggered an attendance run."""

    success: bool
    already_completed_today: bool = False
    error: Optional[str] = None
    data: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {"success": self.success}
        if self.already_completed_today:
            response["already_completed_today"] = True
        if self.error is not None:
            response["error"] = self.error
        if self.data is not None:
            response["data"] = self.data
        return response
