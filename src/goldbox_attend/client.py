"""aiohttp client for the attendance endpoint."""

from __future__ import annotations

import asyncio
import json
from typing import Dict, Optional, Tuple

import aiohttp

from .errors import TransportError
from .logger import debug_detail, get_logger

LOGGER = get_logger("client")

REQUEST_BODY = json.dumps({})


def build_headers(token: str, xsrf_token: Optional[str] = None) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
    }
    if xsrf_token:
        headers["X-XSRF-TOKEN"] = xsrf_token
    return headers


class AttendanceClient:
    """POST the attendance check and hand back the raw status and body."""

    def __init__(self, url: str) -> None:
        self.url = url

    async def post_attendance(
        self,
        token: str,
        xsrf_token: Optional[str] = None,
        cookies: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str]:
        headers = build_headers(token, xsrf_token)
        LOGGER.info("Sending attendance request to %s", self.url)
        debug_detail(f"Header names: {sorted(headers)}; cookies: {sorted(cookies or {})}")
        try:
            async with aiohttp.ClientSession(cookies=cookies) as session:
                async with session.post(self.url, data=REQUEST_BODY, headers=headers) as response:
                    body = await response.text(errors="replace")
                    debug_detail(f"Response {response.status}: {body[:200]}")
                    return response.status, body
        except aiohttp.ClientError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        except asyncio.TimeoutError as exc:
            raise TransportError("request timed out") from exc
