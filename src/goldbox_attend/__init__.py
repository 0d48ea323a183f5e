"""Scheduled attendance check for the goldbox town site."""

__version__ = "1.2.0"

from .classify import Classification, Outcome, classify_response
from .harvester import CredentialHarvester
from .models import AttendanceResult, Credential, RoutineResult, ScheduleConfig
from .requester import AttendanceRequester
from .router import Message, MessageRouter, MessageType
from .service import AttendanceService
from .store import JsonStore

__all__ = [
    "__version__",
    "AttendanceRequester",
    "AttendanceResult",
    "AttendanceService",
    "Classification",
    "Credential",
    "CredentialHarvester",
    "JsonStore",
    "Message",
    "MessageRouter",
    "MessageType",
    "Outcome",
    "RoutineResult",
    "ScheduleConfig",
    "classify_response",
]
