"""The attendance routine: acquire a token, post, classify, record."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Protocol, Tuple
from urllib.parse import unquote

from .classify import Outcome, classify_response, decode_message
from .config import DEFAULT_ALREADY_DONE_PATTERNS
from .errors import (
    AttendanceError,
    AuthRejected,
    CredentialExpired,
    CredentialMissing,
    RequestFailed,
)
from .logger import get_logger, step, success
from .models import AttendanceResult, Credential, RoutineResult
from .store import JsonStore, clear_credential, load_credential, save_attendance_result

LOGGER = get_logger("requester")

XSRF_COOKIE = "XSRF-TOKEN"


class Transport(Protocol):
    async def post_attendance(
        self,
        token: str,
        xsrf_token: Optional[str] = None,
        cookies: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str]:
        """Return ``(status, body)`` or raise TransportError."""


class CookieSource(Protocol):
    async def cookies_for(self, url: str) -> Dict[str, str]:
        """Return the cookies a browser would send to ``url``."""


class TokenRefresher(Protocol):
    async def refresh(self) -> None:
        """Give the harvester a chance to report a fresh token."""


class Notifier(Protocol):
    def notify(self, title: str, message: str) -> None:
        ...


class AttendanceRequester:
    """Run one attendance attempt end to end.

    The routine never raises for expected failures: every outcome becomes a
    persisted history record and a :class:`RoutineResult`. A missing or
    expired token triggers at most one refresh per call.
    """

    def __init__(
        self,
        store: JsonStore,
        transport: Transport,
        site_url: str,
        refresher: Optional[TokenRefresher] = None,
        cookies: Optional[CookieSource] = None,
        notifier: Optional[Notifier] = None,
        patterns: Iterable[str] = DEFAULT_ALREADY_DONE_PATTERNS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._transport = transport
        self._site_url = site_url
        self._refresher = refresher
        self._cookies = cookies
        self._notifier = notifier
        self._patterns = tuple(patterns)
        self._clock = clock

    async def send_attendance(self, may_refresh: bool = True) -> RoutineResult:
        step(f"Attendance check started at {self._clock():%Y-%m-%d %H:%M:%S}")
        try:
            credential = await self.acquire_credential(may_refresh)
            cookies = await self._read_cookies()
            xsrf = unquote(cookies[XSRF_COOKIE]) if cookies.get(XSRF_COOKIE) else None
            if xsrf is None:
                LOGGER.info("No %s cookie (may not be required)", XSRF_COOKIE)

            status, body = await self._transport.post_attendance(credential.token, xsrf, cookies)
            verdict = classify_response(status, body, self._patterns)

            if verdict.outcome is Outcome.SUCCESS:
                success(f"Attendance check succeeded ({status}): {verdict.message}")
                self._record(True, verdict.message)
                self._notify("Attendance checked", "Attendance check completed!")
                return RoutineResult(success=True, data=body)

            if verdict.outcome is Outcome.ALREADY_COMPLETED:
                success("Attendance was already checked today")
                self._record(True, verdict.message, already_completed=True)
                return RoutineResult(success=True, already_completed_today=True, data=body)

            if verdict.invalidate_credential:
                raise AuthRejected(status, decode_message(body))
            raise RequestFailed(status, decode_message(body))

        except AuthRejected as exc:
            LOGGER.warning("Authentication rejected; clearing the stored token")
            clear_credential(self._store)
            return self._fail(str(exc), f"Error: {exc.status}")
        except RequestFailed as exc:
            return self._fail(str(exc), f"Error: {exc.status}")
        except AttendanceError as exc:
            return self._fail(str(exc) or exc.__class__.__name__)
        except Exception as exc:
            LOGGER.error("Unexpected error during attendance check", exc_info=exc)
            return self._fail(f"{exc.__class__.__name__}: {exc}")

    async def acquire_credential(self, may_refresh: bool) -> Credential:
        credential = load_credential(self._store)
        if credential is not None and not credential.is_expired(time.time()):
            return credential

        if credential is None:
            LOGGER.warning("No stored bearer token")
        else:
            LOGGER.warning("Stored bearer token has expired")

        if may_refresh and self._refresher is not None:
            LOGGER.info("Trying to refresh the token through a background page")
            await self._refresher.refresh()
            return await self.acquire_credential(may_refresh=False)

        if credential is None:
            raise CredentialMissing()
        raise CredentialExpired()

    async def _read_cookies(self) -> Dict[str, str]:
        if self._cookies is None:
            return {}
        return await self._cookies.cookies_for(self._site_url)

    def _record(self, ok: bool, message: str, already_completed: bool = False) -> None:
        result = AttendanceResult.create(ok, message, already_completed=already_completed, now=self._clock())
        save_attendance_result(self._store, result)

    def _fail(self, message: str, notice: Optional[str] = None) -> RoutineResult:
        LOGGER.error("Attendance check failed: %s", message)
        self._record(False, message)
        self._notify("Attendance check failed", notice or message)
        return RoutineResult(success=False, error=message)

    def _notify(self, title: str, message: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(title, message)
