"""Relay hub: hardware transport on one side, dashboard viewers on the other."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Mapping, Optional, Sequence

import aiohttp
from aiohttp import web

from . import constants
from .commands import (
    CommandDispatcher,
    CommandFormatError,
    command_from_message,
    format_command,
)
from .config import RelayConfig
from .connection import ConnectionSupervisor, RelaySession
from .core import ConnectionKind, HeartbeatCommand
from .health import HealthReporter
from .parser import LineAssembler, parse_line
from .store import TelemetryStore
from .transport import TransportFactory, TransportSelector, build_transport_factories

LOGGER = logging.getLogger(__name__)


class RelayHub:
    """Serves viewers over WebSocket and relays their commands to the hardware.

    Routes:

    - ``/ws``: viewer socket. Sends ``init`` then every telemetry update;
      accepts JSON commands.
    - ``/api/status``: connection flag, mode, viewer count and snapshot.
    - ``/healthz``: component health (200 ok, 503 degraded).
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        transport_factories: Optional[Sequence[TransportFactory]] = None,
        health: Optional[HealthReporter] = None,
    ) -> None:
        self._config = config
        self._session = RelaySession()
        self._store = TelemetryStore()
        self._dispatcher = CommandDispatcher(self._session)
        self._assembler = LineAssembler()
        self._health = health or HealthReporter()

        factories = transport_factories or build_transport_factories(
            config, config.hub.transports
        )
        self._selector = TransportSelector(self._session, factories)
        self._supervisor = ConnectionSupervisor(
            session=self._session,
            selector=self._selector,
            dispatcher=self._dispatcher,
            on_data=self._handle_data,
            resilience_config=config.resilience,
        )
        self._supervisor.register_connected_callback(self._on_transport_connected)
        self._supervisor.register_disconnected_callback(self._on_transport_lost)

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def session(self) -> RelaySession:
        return self._session

    @property
    def store(self) -> TelemetryStore:
        return self._store

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    @property
    def supervisor(self) -> ConnectionSupervisor:
        return self._supervisor

    @property
    def port(self) -> Optional[int]:
        """Bound TCP port, useful when configured with port 0."""

        if self._runner is None:
            return None
        for address in self._runner.addresses:
            if isinstance(address, tuple) and len(address) >= 2:
                return int(address[1])
        return None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(constants.VIEWER_WS_PATH, self._handle_viewer)
        app.router.add_get(constants.STATUS_PATH, self._handle_status)
        app.router.add_get(constants.HEALTH_PATH, self._handle_health)
        return app

    async def start(self) -> None:
        await self._health.report_transport(None)
        await self._health.update("viewers", True, "0 connected")

        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.hub.host, self._config.hub.port)
        await self._site.start()
        LOGGER.info(
            "Relay hub listening on http://%s:%s", self._config.hub.host, self.port
        )

        await self._supervisor.connect()

    async def stop(self) -> None:
        LOGGER.info("Shutting down relay hub")
        await self._supervisor.disconnect()
        await self._store.close_all()
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def status(self) -> Dict[str, Any]:
        kind = self._session.kind
        return {
            "connected": self._session.is_connected
            and kind is not None
            and kind != ConnectionKind.SIMULATION,
            "mode": kind.value if kind is not None else None,
            "clients": self._store.viewer_count,
            "queued": self._dispatcher.pending_count,
            "data": self._store.snapshot(),
        }

    async def handle_command(self, message: Mapping[str, Any]) -> None:
        """Decode and act on one viewer command."""

        try:
            command = command_from_message(message)
        except CommandFormatError as exc:
            LOGGER.warning("Rejected viewer command %r: %s", message, exc)
            return

        if isinstance(command, HeartbeatCommand):
            await self._store.broadcast(
                {"type": "heartbeat_response", "timestamp": int(time.time() * 1000)}
            )
            return

        LOGGER.info("Received command: %s", format_command(command).strip())
        await self._dispatcher.submit(command)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _handle_data(self, chunk: str) -> None:
        for line in self._assembler.feed(chunk):
            event = parse_line(line)
            if event is not None:
                await self._store.apply(event)

    async def _on_transport_connected(self, kind: ConnectionKind) -> None:
        await self._health.report_transport(kind)

    async def _on_transport_lost(self, exc: Optional[BaseException]) -> None:
        self._assembler.reset()
        await self._health.report_transport(None)

    async def _handle_viewer(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=20.0)
        await ws.prepare(request)

        if not await self._store.subscribe(ws):
            return ws
        await self._report_viewers()

        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    try:
                        payload = json.loads(message.data)
                    except json.JSONDecodeError:
                        LOGGER.warning("Error parsing viewer message: %r", message.data)
                        continue
                    if isinstance(payload, dict):
                        await self.handle_command(payload)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    LOGGER.warning("Viewer websocket error: %s", ws.exception())
        finally:
            self._store.unsubscribe(ws)
            await self._report_viewers()
        return ws

    async def _report_viewers(self) -> None:
        await self._health.update(
            "viewers", True, f"{self._store.viewer_count} connected"
        )

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.status())

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._health.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
