"""WebSocket transport connecting a relay client to a relay hub."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from typing import Optional

import aiohttp

from ..core import (
    ClosedCallback,
    Command,
    ConnectionKind,
    DataCallback,
    TransportError,
    TransportUnavailableError,
    maybe_await,
)
from ..parser import message_to_lines

LOGGER = logging.getLogger(__name__)


class HubWebSocketTransport:
    """Receives hub broadcasts and forwards viewer commands as JSON.

    Hub messages are translated back into wire lines so the client parses
    every source the same way. Text frames that are not JSON are passed
    through untouched.
    """

    kind = ConnectionKind.WEBSOCKET

    def __init__(
        self,
        url: str,
        *,
        connect_timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.url = url
        self._connect_timeout = connect_timeout
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._closing = False
        self.last_heartbeat_response: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed and not self._closing

    async def open(self, on_data: DataCallback, on_closed: ClosedCallback) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(timeout=timeout)

        try:
            async with asyncio.timeout(self._connect_timeout):
                self._ws = await self._session.ws_connect(self.url)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            await self._close_session()
            raise TransportUnavailableError(
                f"Cannot reach relay hub at {self.url}: {exc or type(exc).__name__}"
            ) from exc

        self._closing = False
        LOGGER.info("Connected to relay hub at %s", self.url)
        self._reader_task = asyncio.create_task(self._read_loop(on_data, on_closed))

    async def send(self, command: Command) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportError("Hub websocket is not open")
        try:
            await ws.send_json(command.as_message())
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as exc:
            raise TransportError(f"Hub websocket send failed: {exc}") from exc

    async def close(self) -> None:
        self._closing = True

        task = self._reader_task
        self._reader_task = None

        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            with contextlib.suppress(Exception):
                await ws.close()

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._close_session()

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _read_loop(self, on_data: DataCallback, on_closed: ClosedCallback) -> None:
        ws = self._ws
        error: Optional[BaseException] = None
        if ws is None:
            return
        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch(message.data, on_data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception() or TransportError("Websocket error")
                    break
        except (aiohttp.ClientError, ConnectionError) as exc:
            error = exc

        if self._closing:
            return
        await maybe_await(on_closed, error)

    async def _dispatch(self, raw_data: str, on_data: DataCallback) -> None:
        try:
            payload = json.loads(raw_data)
        except json.JSONDecodeError:
            chunk = raw_data if raw_data.endswith("\n") else raw_data + "\n"
        else:
            if not isinstance(payload, dict):
                return
            if payload.get("type") == "heartbeat_response":
                self.last_heartbeat_response = int(time.time() * 1000)
                return
            lines = message_to_lines(payload)
            if not lines:
                LOGGER.debug("Ignoring hub message of type %r", payload.get("type"))
                return
            chunk = "\n".join(lines) + "\n"

        try:
            await maybe_await(on_data, chunk)
        except Exception:
            LOGGER.exception("Hub data callback failed")
