"""Viewer-side relay client.

Connects to a relay hub over WebSocket, falling back to a local serial
device and then to simulation, and republishes every reading as a typed
:class:`~gse_relay.core.TelemetryEvent` to registered listeners.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from .commands import CommandDispatcher
from .config import RelayConfig
from .connection import ConnectionState, ConnectionSupervisor, RelaySession
from .core import (
    Command,
    EmergencyStopCommand,
    EventListener,
    ServoCommand,
    StatusCommand,
    TelemetryEvent,
    ValveAction,
    ValveCommand,
    maybe_await,
)
from .parser import LineAssembler, parse_line
from .transport import TransportFactory, TransportSelector, build_transport_factories

LOGGER = logging.getLogger(__name__)


class RelayClient:
    """Single relay session with listener fan-out and command helpers."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        transport_factories: Optional[Sequence[TransportFactory]] = None,
        hub_url: Optional[str] = None,
    ) -> None:
        self._config = config
        self._session = RelaySession()
        self._dispatcher = CommandDispatcher(self._session)
        self._assembler = LineAssembler()
        self._listeners: list[EventListener] = []

        factories = transport_factories or build_transport_factories(
            config, config.client.transports, hub_url=hub_url
        )
        self._selector = TransportSelector(self._session, factories)
        self._supervisor = ConnectionSupervisor(
            session=self._session,
            selector=self._selector,
            dispatcher=self._dispatcher,
            on_data=self._handle_data,
            resilience_config=config.resilience,
        )
        self._supervisor.register_disconnected_callback(self._on_transport_lost)

    @property
    def session(self) -> RelaySession:
        return self._session

    @property
    def supervisor(self) -> ConnectionSupervisor:
        return self._supervisor

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    def on_data(self, listener: EventListener) -> None:
        """Register a listener for parsed telemetry events."""

        if listener in self._listeners:
            raise ValueError("Listener already registered")
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def connect(self) -> ConnectionState:
        return await self._supervisor.connect()

    async def disconnect(self) -> None:
        await self._supervisor.disconnect()
        self._assembler.reset()

    async def send_command(self, command: Command) -> bool:
        """Send now if connected, otherwise queue. Returns True if sent."""

        return await self._dispatcher.submit(command)

    async def open_valve(self, name: str) -> bool:
        return await self.send_command(ValveCommand(name=name, action=ValveAction.OPEN))

    async def close_valve(self, name: str) -> bool:
        return await self.send_command(ValveCommand(name=name, action=ValveAction.CLOSE))

    async def set_servo_position(self, name: str, position: float) -> bool:
        return await self.send_command(ServoCommand(name=name, position=float(position)))

    async def emergency_stop(self) -> bool:
        return await self.send_command(EmergencyStopCommand())

    async def set_mission_status(self, status: str) -> bool:
        return await self.send_command(StatusCommand(value=status))

    def connection_status(self) -> Dict[str, Any]:
        """Session status plus when the hub last answered a heartbeat (epoch ms).

        ``lastHeartbeatResponse`` is None unless connected through a hub.
        """

        status = self._session.status()
        status["lastHeartbeatResponse"] = getattr(
            self._session.transport, "last_heartbeat_response", None
        )
        return status

    async def _handle_data(self, chunk: str) -> None:
        for line in self._assembler.feed(chunk):
            event = parse_line(line)
            if event is not None:
                await self._emit(event)

    async def _emit(self, event: TelemetryEvent) -> None:
        for listener in list(self._listeners):
            try:
                await maybe_await(listener, event)
            except Exception:
                LOGGER.exception("Telemetry listener failed")

    def _on_transport_lost(self, exc: Optional[BaseException]) -> None:
        self._assembler.reset()
