import asyncio
import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from goldbox_attend.errors import TransportError
from goldbox_attend.requester import AttendanceRequester
from goldbox_attend.store import EXPIRY_KEY, HISTORY_KEY, TOKEN_KEY, JsonStore

SITE = "https://ggm.gondr.net"
NOW = datetime(2026, 4, 2, 7, 30, 0)


class FakeTransport:
    def __init__(self, responses: List[Tuple[int, str]]) -> None:
        self.responses = list(responses)
        self.calls: List[Tuple[str, Optional[str], Optional[Dict[str, str]]]] = []

    async def post_attendance(self, token, xsrf_token=None, cookies=None):
        self.calls.append((token, xsrf_token, cookies))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeCookies:
    def __init__(self, cookies: Dict[str, str]) -> None:
        self.cookies = cookies
        self.urls: List[str] = []

    async def cookies_for(self, url: str) -> Dict[str, str]:
        self.urls.append(url)
        return dict(self.cookies)


class StoringRefresher:
    """Refresher that simulates the harvester writing a token during refresh."""

    def __init__(self, store: JsonStore, token: Optional[str]) -> None:
        self.store = store
        self.token = token
        self.calls = 0

    async def refresh(self) -> None:
        self.calls += 1
        if self.token:
            self.store.set({TOKEN_KEY: self.token})


@pytest.fixture
def store(tmp_path: Path) -> JsonStore:
    return JsonStore(tmp_path / "state.json")


def make_requester(store, transport, **kwargs) -> AttendanceRequester:
    kwargs.setdefault("notifier", MagicMock())
    return AttendanceRequester(store, transport, SITE, clock=lambda: NOW, **kwargs)


def test_success_records_and_notifies(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "tok"})
    body = json.dumps({"msg": "completed"})
    transport = FakeTransport([(200, body)])
    notifier = MagicMock()

    result = asyncio.run(make_requester(store, transport, notifier=notifier).send_attendance())

    assert result.success
    assert result.data == body
    assert transport.calls == [("tok", None, {})]
    assert store.get("message") == "completed"
    assert store.get("today_checked") == "2026-04-02"
    assert store.get("already_checked_today") is False
    notifier.notify.assert_called_once_with("Attendance checked", "Attendance check completed!")


def test_already_done_is_success_without_notification(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "tok"})
    transport = FakeTransport([(400, json.dumps({"msg": "이미 출석체크를 하셨습니다"}))])
    notifier = MagicMock()

    result = asyncio.run(make_requester(store, transport, notifier=notifier).send_attendance())

    assert result.success
    assert result.already_completed_today
    assert store.get("already_checked_today") is True
    assert store.get("message") == "already checked in today"
    notifier.notify.assert_not_called()


def test_unauthorized_clears_credential(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "tok", EXPIRY_KEY: None})
    transport = FakeTransport([(401, "Unauthorized")])
    notifier = MagicMock()

    result = asyncio.run(make_requester(store, transport, notifier=notifier).send_attendance())

    assert not result.success
    assert result.error == "HTTP 401: Unauthorized"
    assert store.get(TOKEN_KEY) is None
    assert store.get(HISTORY_KEY)[0]["success"] is False
    notifier.notify.assert_called_once_with("Attendance check failed", "Error: 401")


def test_server_error_keeps_credential(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "tok"})
    transport = FakeTransport([(500, json.dumps({"msg": "boom"}))])

    result = asyncio.run(make_requester(store, transport).send_attendance())

    assert result.error == "HTTP 500: boom"
    assert store.get(TOKEN_KEY) == "tok"


def test_missing_credential_without_refresher_makes_no_request(store: JsonStore) -> None:
    transport = FakeTransport([])

    result = asyncio.run(make_requester(store, transport).send_attendance())

    assert not result.success
    assert "no credential" in result.error
    assert transport.calls == []
    assert store.get("success") is False


def test_refresh_runs_once_and_retries_once(store: JsonStore) -> None:
    transport = FakeTransport([(200, "{}")])
    refresher = StoringRefresher(store, token="fresh")

    result = asyncio.run(make_requester(store, transport, refresher=refresher).send_attendance())

    assert result.success
    assert refresher.calls == 1
    assert transport.calls[0][0] == "fresh"


def test_refresh_that_finds_nothing_fails_after_one_attempt(store: JsonStore) -> None:
    transport = FakeTransport([])
    refresher = StoringRefresher(store, token=None)

    result = asyncio.run(make_requester(store, transport, refresher=refresher).send_attendance())

    assert not result.success
    assert refresher.calls == 1
    assert transport.calls == []


def test_expired_credential_triggers_refresh(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "old", EXPIRY_KEY: time.time() - 60})
    transport = FakeTransport([])
    refresher = StoringRefresher(store, token=None)

    result = asyncio.run(make_requester(store, transport, refresher=refresher).send_attendance())

    assert refresher.calls == 1
    assert "expired" in result.error


def test_no_refresh_when_disabled(store: JsonStore) -> None:
    refresher = StoringRefresher(store, token="fresh")

    result = asyncio.run(
        make_requester(store, FakeTransport([]), refresher=refresher).send_attendance(may_refresh=False)
    )

    assert not result.success
    assert refresher.calls == 0


def test_xsrf_cookie_is_url_decoded(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "tok"})
    transport = FakeTransport([(200, "{}")])
    cookies = FakeCookies({"XSRF-TOKEN": "abc%3D%3D", "session": "s1"})

    asyncio.run(make_requester(store, transport, cookies=cookies).send_attendance())

    token, xsrf, sent_cookies = transport.calls[0]
    assert xsrf == "abc=="
    assert sent_cookies == {"XSRF-TOKEN": "abc%3D%3D", "session": "s1"}
    assert cookies.urls == [SITE]


def test_transport_error_is_recorded(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "tok"})
    transport = FakeTransport([TransportError("connection refused")])
    notifier = MagicMock()

    result = asyncio.run(make_requester(store, transport, notifier=notifier).send_attendance())

    assert result.error == "connection refused"
    assert store.get("message") == "connection refused"
    notifier.notify.assert_called_once_with("Attendance check failed", "connection refused")


def test_auth_rejection_is_logged(store: JsonStore, caplog: pytest.LogCaptureFixture, monkeypatch) -> None:
    monkeypatch.setattr(logging.getLogger("goldbox_attend"), "propagate", True)
    store.set({TOKEN_KEY: "tok"})

    with caplog.at_level(logging.INFO):
        asyncio.run(make_requester(store, FakeTransport([(403, "Forbidden")])).send_attendance())

    messages = [record.getMessage() for record in caplog.records]
    assert any("clearing the stored token" in message for message in messages)
    assert any("HTTP 403: Forbidden" in message for message in messages)


def test_unexpected_error_is_recorded_as_failure(store: JsonStore) -> None:
    store.set({TOKEN_KEY: "tok"})
    transport = FakeTransport([UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")])
    notifier = MagicMock()

    result = asyncio.run(make_requester(store, transport, notifier=notifier).send_attendance())

    assert not result.success
    assert result.error.startswith("UnicodeDecodeError:")
    assert store.get(HISTORY_KEY)[0]["success"] is False
    assert store.get(TOKEN_KEY) == "tok"
    notifier.notify.assert_called_once()
