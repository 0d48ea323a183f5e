"""Exceptions raised inside the attendance routine.

Each one is caught at the routine boundary and turned into a persisted
failure record, so none of them ever stops the daemon.
"""

from __future__ import annotations


class AttendanceError(Exception):
    """Base class for attendance failures."""


class CredentialMissing(AttendanceError):
    """No bearer token is stored; the user has to visit the site and log in."""

    def __init__(self, message: str = "no credential - log in on the site first") -> None:
        super().__init__(message)


class CredentialExpired(CredentialMissing):
    def __init__(self, message: str = "credential expired - log in on the site again") -> None:
        super().__init__(message)


class RequestFailed(AttendanceError):
    """The site answered with a non-2xx status that is not an already-done 400."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.detail = message


class AuthRejected(RequestFailed):
    """HTTP 401/403; the stored credential is no longer accepted."""


class TransportError(AttendanceError):
    """The request never produced a response."""


class UnknownMessageError(LookupError):
    pass
