"""Flat JSON key-value store plus the history ring buffer built on it."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .logger import get_logger
from .models import AttendanceResult, Credential, ScheduleConfig

LOGGER = get_logger("store")

HISTORY_LIMIT = 100

TOKEN_KEY = "bearer_token"
EXPIRY_KEY = "token_expiry"
TOKEN_UPDATED_KEY = "token_updated_at"
USER_NAME_KEY = "user_name"
USER_INFO_KEY = "user_info"
HISTORY_KEY = "attendance_history"
DELAY_KEY = "alarm_delay_minutes"
PERIOD_KEY = "alarm_period_minutes"
VERSION_KEY = "installed_version"


class JsonStore:
    """Persisted state kept in a single JSON object on disk.

    Every write rewrites the whole file. Reads go through the in-memory copy,
    which is loaded once; a missing or corrupted file starts empty.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.data: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return
        if isinstance(payload, dict):
            self.data.update(payload)

    def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self.data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Unable to persist state: %s", exc)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {key: self.data.get(key) for key in keys}

    def set(self, values: Dict[str, Any]) -> None:
        self.data.update(values)
        self._save()

    def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.data.pop(key, None)
        self._save()

    def clear(self) -> None:
        self.data.clear()
        self._save()


def append_history(history: List[Dict[str, Any]], record: Dict[str, Any], limit: int = HISTORY_LIMIT) -> List[Dict[str, Any]]:
    """Return ``history`` with ``record`` first, trimmed to ``limit`` entries."""
    updated = [record] + list(history)
    del updated[limit:]
    return updated


def save_attendance_result(store: JsonStore, result: AttendanceResult) -> Dict[str, Any]:
    """Write the flat ``last_*`` keys and prepend the record to the history."""
    record = result.to_record()
    history = store.get(HISTORY_KEY) or []
    store.set({**record, HISTORY_KEY: append_history(history, record)})
    LOGGER.debug("Saved attendance result: %s", record)
    return record


def load_credential(store: JsonStore) -> Optional[Credential]:
    token = store.get(TOKEN_KEY)
    if not token:
        return None
    return Credential(token=token, expiry=store.get(EXPIRY_KEY), user_profile=store.get(USER_INFO_KEY))


def clear_credential(store: JsonStore) -> None:
    store.remove([TOKEN_KEY, EXPIRY_KEY])


def load_schedule(store: JsonStore) -> ScheduleConfig:
    defaults = ScheduleConfig()
    return ScheduleConfig(
        initial_delay_minutes=store.get(DELAY_KEY) or defaults.initial_delay_minutes,
        period_minutes=store.get(PERIOD_KEY) or defaults.period_minutes,
    )


def save_schedule(store: JsonStore, config: ScheduleConfig) -> None:
    store.set({DELAY_KEY: config.initial_delay_minutes, PERIOD_KEY: config.period_minutes})
