import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from goldbox_attend.harvester import (
    _BINDING_NAME,
    _WATCH_JS,
    LOCAL_STORAGE,
    SESSION_STORAGE,
    CredentialHarvester,
    StorageWatcher,
    find_token_in_object,
    parse_token_value,
)
from goldbox_attend.router import Message, MessageType

LONG_TOKEN = "eyJhbGciOiJIUzI1NiJ9.payload.signature"


class FakePageStorage:
    def __init__(
        self,
        local: Optional[Dict[str, str]] = None,
        session: Optional[Dict[str, str]] = None,
        globals_: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.areas = {LOCAL_STORAGE: local or {}, SESSION_STORAGE: session or {}}
        self.globals = globals_ or {}
        self.global_reads: List[str] = []

    async def storage_items(self, area: str, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        return {key: self.areas[area].get(key) for key in keys}

    async def global_state(self, name: str) -> Any:
        self.global_reads.append(name)
        return self.globals.get(name)


def test_parse_token_value_plain_string() -> None:
    credential = parse_token_value("abc.def")

    assert credential is not None
    assert credential.token == "abc.def"
    assert credential.expiry is None


def test_parse_token_value_unwraps_json_object() -> None:
    raw = json.dumps({"accessToken": "inner", "exp": 1_700_000_000})

    credential = parse_token_value(raw)

    assert credential is not None
    assert credential.token == "inner"
    assert credential.expiry == 1_700_000_000.0


def test_parse_token_value_prefers_fields_in_order() -> None:
    raw = json.dumps({"value": "last", "token": "first", "expiry": 1_700_000_000_000})

    credential = parse_token_value(raw)

    assert credential.token == "first"
    assert credential.expiry == 1_700_000_000.0


def test_parse_token_value_json_without_token_field_keeps_raw() -> None:
    raw = json.dumps({"token": "", "other": 1})

    assert parse_token_value(raw).token == raw


def test_parse_token_value_json_string() -> None:
    assert parse_token_value('"quoted"').token == "quoted"
    assert parse_token_value('""') is None


@pytest.mark.parametrize("raw", ["null", "true", "42"])
def test_parse_token_value_ignores_json_scalars(raw: str) -> None:
    assert parse_token_value(raw) is None


def test_null_local_token_falls_through_to_session_storage() -> None:
    storage = FakePageStorage(local={"token": "null"}, session={"token": "real-session-token"})

    credential = asyncio.run(CredentialHarvester(storage).discover())

    assert credential.token == "real-session-token"


def test_find_token_in_object_requires_long_value() -> None:
    assert find_token_in_object({"auth": {"token": "short"}}) is None
    assert find_token_in_object({"auth": {"token": LONG_TOKEN}}) == LONG_TOKEN
    assert find_token_in_object({"list": [{"jwt": LONG_TOKEN}]}) == LONG_TOKEN


def test_find_token_in_object_stops_at_depth_limit() -> None:
    nested: Dict[str, Any] = {"bearer": LONG_TOKEN}
    for _ in range(6):
        nested = {"level": nested}

    assert find_token_in_object(nested) is None


def test_local_storage_wins_over_session_and_globals() -> None:
    storage = FakePageStorage(
        local={"access_token": "from-local"},
        session={"token": "from-session"},
        globals_={"__NUXT__": {"token": LONG_TOKEN}},
    )

    credential = asyncio.run(CredentialHarvester(storage).discover())

    assert credential.token == "from-local"
    assert storage.global_reads == []


def test_key_order_decides_within_an_area() -> None:
    storage = FakePageStorage(local={"bearerToken": "later", "token": "earlier"})

    credential = asyncio.run(CredentialHarvester(storage).discover())

    assert credential.token == "earlier"


def test_session_storage_used_when_local_is_empty() -> None:
    storage = FakePageStorage(session={"jwt": "from-session"})

    credential = asyncio.run(CredentialHarvester(storage).discover())

    assert credential.token == "from-session"


def test_globals_are_searched_last() -> None:
    storage = FakePageStorage(globals_={"__NEXT_DATA__": {"props": {"auth": {"accessToken": LONG_TOKEN}}}})

    credential = asyncio.run(CredentialHarvester(storage).discover())

    assert credential.token == LONG_TOKEN
    assert storage.global_reads == ["__INITIAL_STATE__", "__NUXT__", "__NEXT_DATA__"]


def test_nothing_found_reports_nothing() -> None:
    reported: List[Message] = []

    async def report(message: Message) -> None:
        reported.append(message)

    result = asyncio.run(CredentialHarvester(FakePageStorage(), report).harvest())

    assert result is None
    assert reported == []


def test_harvest_reports_token_with_profile() -> None:
    reported: List[Message] = []

    async def report(message: Message) -> None:
        reported.append(message)

    storage = FakePageStorage(
        local={
            "token": json.dumps({"token": "abc", "expires_at": 1_700_000_000}),
            "userInfo": "not json",
            "currentUser": json.dumps({"name": "Kim"}),
        }
    )

    asyncio.run(CredentialHarvester(storage, report).harvest())

    assert reported == [
        Message(
            MessageType.CREDENTIAL_UPDATE,
            {"token": "abc", "expiry": 1_700_000_000.0, "user_info": {"name": "Kim"}},
        )
    ]


def test_report_failure_does_not_raise() -> None:
    async def report(message: Message) -> None:
        raise RuntimeError("router offline")

    storage = FakePageStorage(local={"token": "abc"})

    credential = asyncio.run(CredentialHarvester(storage, report).harvest())

    assert credential.token == "abc"


def _fake_page(url: str, local: Dict[str, str]) -> MagicMock:
    async def evaluate(script: str, arg: Any = None) -> Any:
        if isinstance(arg, list):
            area, keys = arg
            return {key: local.get(key) if area == LOCAL_STORAGE else None for key in keys}
        return None

    page = MagicMock()
    page.url = url
    page.is_closed.return_value = False
    page.evaluate = AsyncMock(side_effect=evaluate)
    return page


def test_watcher_harvests_only_target_domain_pages() -> None:
    reported: List[Message] = []

    async def report(message: Message) -> None:
        reported.append(message)

    watcher = StorageWatcher(MagicMock(), "ggm.gondr.net", report)
    on_site = _fake_page("https://ggm.gondr.net/town", {"token": "abc"})
    sub_domain = _fake_page("https://api.ggm.gondr.net/", {"token": "sub"})
    elsewhere = _fake_page("https://example.com/", {"token": "nope"})

    async def scenario() -> None:
        await watcher.harvest_page(on_site, "test")
        await watcher.harvest_page(sub_domain, "test")
        await watcher.harvest_page(elsewhere, "test")

    asyncio.run(scenario())

    assert [message.data["token"] for message in reported] == ["abc", "sub"]
    elsewhere.evaluate.assert_not_called()


def test_watcher_survives_page_errors() -> None:
    page = _fake_page("https://ggm.gondr.net/", {})
    page.evaluate = AsyncMock(side_effect=PlaywrightError("Target closed"))
    watcher = StorageWatcher(MagicMock(), "ggm.gondr.net", AsyncMock())

    assert asyncio.run(watcher.harvest_page(page, "poll")) is None


DOMAIN = "ggm.gondr.net"


def _fake_context(pages: List[MagicMock]) -> MagicMock:
    context = MagicMock()
    context.expose_binding = AsyncMock()
    context.add_init_script = AsyncMock()
    context.pages = pages
    return context


def _page_handlers(page: MagicMock) -> Dict[str, Any]:
    return {call.args[0]: call.args[1] for call in page.on.call_args_list}


def test_watch_installs_hooks_and_harvests_existing_pages() -> None:
    reported: List[Message] = []

    async def report(message: Message) -> None:
        reported.append(message)

    existing = _fake_page("https://ggm.gondr.net/town", {"token": "abc"})
    context = _fake_context([existing])
    watcher = StorageWatcher(context, DOMAIN, report, poll_seconds=60)

    async def scenario() -> None:
        await watcher.watch()
        await asyncio.sleep(0.01)
        assert len(reported) == 1

        _page_handlers(existing)["load"](existing)
        await asyncio.sleep(0.01)
        assert len(reported) == 2

        await watcher._on_storage_changed({"page": existing}, "token")
        watcher.stop()

    asyncio.run(scenario())

    context.expose_binding.assert_awaited_once_with(_BINDING_NAME, watcher._on_storage_changed)
    context.add_init_script.assert_awaited_once_with(_WATCH_JS)
    context.on.assert_called_once_with("page", watcher._track_page)
    existing.evaluate.assert_any_await(_WATCH_JS)
    assert set(_page_handlers(existing)) == {"load", "close"}
    assert [message.data["token"] for message in reported] == ["abc", "abc", "abc"]


def test_new_page_is_polled_until_closed() -> None:
    reported: List[Message] = []

    async def report(message: Message) -> None:
        reported.append(message)

    context = _fake_context([])
    new_page = _fake_page("https://ggm.gondr.net/", {"token": "abc"})
    watcher = StorageWatcher(context, DOMAIN, report, poll_seconds=0.01)

    async def scenario() -> int:
        await watcher.watch()
        context.on.call_args.args[1](new_page)
        await asyncio.sleep(0.045)
        polled = len(reported)

        new_page.is_closed.return_value = True
        _page_handlers(new_page)["close"](new_page)
        await asyncio.sleep(0.03)
        watcher.stop()
        return polled

    polled = asyncio.run(scenario())

    # the same token is reported on every poll
    assert polled >= 2
    assert len(reported) == polled
    assert {message.data["token"] for message in reported} == {"abc"}
