from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Any

from pydantic import BaseModel

from shopfloor.schemas.remote import GET_ALL_DATA, RemoteResponse, command_body, parse_command, parse_response
from shopfloor.services.errors import PayloadParseError, RemoteError
from shopfloor.settings import REMOTE_TIMEOUT_SECONDS, remote_api_url

LOGGER = logging.getLogger("shopfloor.remote")


class RemoteBackendClient:
    """Blocking JSON calls to the remote sheet backend, exposed as awaitables.

    Reads are a plain GET of the endpoint; every write is a POST whose body is
    `{"action": ..., **payload}`.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = REMOTE_TIMEOUT_SECONDS):
        self.base_url = (base_url or remote_api_url()).rstrip("/")
        self.timeout = timeout

    def _open(self, request: urllib.request.Request) -> Any:
        try:
            if self.timeout is None:
                response_cm = urllib.request.urlopen(request)
            else:
                response_cm = urllib.request.urlopen(request, timeout=self.timeout)
            with response_cm as response:
                if response.status != 200:
                    raise RemoteError(f"Remote backend returned status {response.status}")
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise RemoteError(f"Remote backend HTTP error: {exc.code}") from exc
        except urllib.error.URLError as exc:
            raise RemoteError(f"Remote backend connection error: {exc.reason}") from exc
        except OSError as exc:
            raise RemoteError(f"Remote backend I/O error: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RemoteError("Remote backend returned invalid JSON") from exc

    def fetch_all_sync(self) -> Any:
        LOGGER.debug("%s from %s", GET_ALL_DATA, self.base_url)
        request = urllib.request.Request(url=self.base_url, method="GET")
        return self._open(request)

    def send_sync(self, command: BaseModel) -> RemoteResponse:
        body = command_body(command)
        # Only the known write actions may leave this process.
        parse_command(body)
        action = body.get("action")
        request = urllib.request.Request(
            url=self.base_url,
            data=json.dumps(body, ensure_ascii=False).encode("utf-8"),
            # text/plain keeps the request "simple" for the Apps Script endpoint.
            headers={"Content-Type": "text/plain;charset=utf-8"},
            method="POST",
        )
        payload = self._open(request)
        try:
            response = parse_response(payload)
        except PayloadParseError as exc:
            raise RemoteError(f"{action}: {exc}") from exc
        if response.status != "success":
            raise RemoteError(response.message or f"{action} was rejected by the remote backend")
        LOGGER.info("Remote action %s succeeded", action)
        return response

    async def fetch_all(self) -> Any:
        return await asyncio.to_thread(self.fetch_all_sync)

    async def send(self, command: BaseModel) -> RemoteResponse:
        return await asyncio.to_thread(self.send_sync, command)
