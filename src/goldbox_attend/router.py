"""Typed messages and the dispatch table that answers them."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

from .errors import UnknownMessageError
from .logger import debug_detail


class MessageType(str, enum.Enum):
    CREDENTIAL_UPDATE = "credential-update"
    MANUAL_ATTENDANCE = "manual-attendance"
    GET_STATUS = "get-status"
    GET_SETTINGS = "get-settings"
    SAVE_SETTINGS = "save-settings"
    GET_LOGS = "get-logs"
    CLEAR_LOGS = "clear-logs"
    RESET_ALL = "reset-all"


@dataclass(frozen=True)
class Message:
    type: MessageType
    data: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[Message], Awaitable[Dict[str, Any]]]


class MessageRouter:
    """Route each message to the single handler registered for its type."""

    def __init__(self) -> None:
        self._handlers: Dict[MessageType, Handler] = {}

    def register(self, message_type: MessageType, handler: Handler) -> None:
        self._handlers[message_type] = handler

    async def dispatch(self, message: Message) -> Dict[str, Any]:
        handler = self._handlers.get(message.type)
        if handler is None:
            raise UnknownMessageError(f"No handler for message type {message.type!r}")
        debug_detail(f"Dispatching {message.type.value}")
        return await handler(message)

    async def send(self, message_type: MessageType, **data: Any) -> Dict[str, Any]:
        return await self.dispatch(Message(message_type, data))
