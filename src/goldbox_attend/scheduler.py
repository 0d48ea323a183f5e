"""Named recurring alarms on top of asyncio."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .logger import get_logger

LOGGER = get_logger("scheduler")

ATTENDANCE_ALARM = "attendance-alarm"

AlarmCallback = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class Alarm:
    name: str
    delay_minutes: float
    period_minutes: float


class AlarmScheduler:
    """Keep at most one running timer per alarm name.

    Creating an alarm under a name that already exists replaces it. A failing
    callback is logged and the alarm keeps firing.
    """

    def __init__(self, seconds_per_minute: float = 60.0) -> None:
        self._seconds_per_minute = seconds_per_minute
        self._alarms: Dict[str, Alarm] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running: Set[asyncio.Task] = set()

    def create(self, name: str, delay_minutes: float, period_minutes: float, callback: AlarmCallback) -> Alarm:
        self.clear(name)
        alarm = Alarm(name, delay_minutes, period_minutes)
        self._alarms[name] = alarm
        self._tasks[name] = asyncio.ensure_future(self._run(alarm, callback))
        LOGGER.info(
            "Alarm '%s' armed: first run in %s min, then every %s min",
            name,
            delay_minutes,
            period_minutes,
        )
        return alarm

    def get(self, name: str) -> Optional[Alarm]:
        return self._alarms.get(name)

    def clear(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        self._alarms.pop(name, None)
        if task is None:
            return False
        task.cancel()
        return True

    def clear_all(self) -> None:
        for name in list(self._tasks):
            self.clear(name)

    async def _run(self, alarm: Alarm, callback: AlarmCallback) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + alarm.delay_minutes * self._seconds_per_minute
        while True:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
            next_fire += alarm.period_minutes * self._seconds_per_minute
            LOGGER.info("Alarm '%s' fired", alarm.name)
            # Runs detached so clearing the alarm never interrupts a started run.
            run = asyncio.ensure_future(callback())
            self._running.add(run)
            run.add_done_callback(self._finish_run)

    def _finish_run(self, run: asyncio.Task) -> None:
        self._running.discard(run)
        if not run.cancelled() and run.exception() is not None:
            LOGGER.error("Alarm callback failed: %s", run.exception(), exc_info=run.exception())

    async def drain(self) -> None:
        """Wait for alarm runs that are still in flight."""
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
