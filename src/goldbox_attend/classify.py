"""Interpretation of the attendance endpoint's HTTP responses."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Iterable

from .config import DEFAULT_ALREADY_DONE_PATTERNS

ALREADY_DONE_MESSAGE = "already checked in today"
AUTH_STATUSES = frozenset({401, 403})


class Outcome(enum.Enum):
    SUCCESS = "success"
    ALREADY_COMPLETED = "already_completed"
    FAILURE = "failure"


@dataclass(frozen=True)
class Classification:
    outcome: Outcome
    status: int
    message: str
    invalidate_credential: bool = False

    @property
    def success(self) -> bool:
        return self.outcome is not Outcome.FAILURE


def decode_message(body: str) -> str:
    """Return the JSON ``msg`` field when present, else the raw body."""
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    if isinstance(payload, dict) and payload.get("msg"):
        return str(payload["msg"])
    return body


def looks_already_done(message: str, patterns: Iterable[str] = DEFAULT_ALREADY_DONE_PATTERNS) -> bool:
    lowered = message.lower()
    return any(pattern.lower() in lowered for pattern in patterns)


def classify_response(
    status: int,
    body: str,
    patterns: Iterable[str] = DEFAULT_ALREADY_DONE_PATTERNS,
) -> Classification:
    """Classify a response purely from its status code and body text."""
    message = decode_message(body)
    if 200 <= status < 300:
        return Classification(Outcome.SUCCESS, status, message)
    if status == 400 and looks_already_done(message, patterns):
        return Classification(Outcome.ALREADY_COMPLETED, status, ALREADY_DONE_MESSAGE)
    return Classification(
        Outcome.FAILURE,
        status,
        f"HTTP {status}: {message}",
        invalidate_credential=status in AUTH_STATUSES,
    )
