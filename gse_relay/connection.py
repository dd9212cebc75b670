"""Connection session, heartbeat and reconnection management.

The relay keeps exactly one :class:`RelaySession` per process. The
:class:`ConnectionSupervisor` drives it through the connect, heartbeat and
retry cycle: while connected a heartbeat is submitted every few seconds;
when the transport drops a single retry loop re-runs the transport selector
on a fixed interval until it succeeds, then drains the queued commands.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, Optional

from .core import (
    Command,
    ConnectionKind,
    DataCallback,
    HeartbeatCommand,
    Transport,
)

if TYPE_CHECKING:
    from .commands import CommandDispatcher
    from .config import ResilienceConfig
    from .transport import TransportSelector

LOGGER = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Current state of the relay transport."""

    DISCONNECTED = "disconnected"
    """No transport is open."""

    CONNECTING = "connecting"
    """Initial transport selection in progress."""

    CONNECTED = "connected"
    """A transport is open; see :attr:`RelaySession.kind` for which one."""

    RECONNECTING = "reconnecting"
    """Transport selection in progress after a disconnect."""


@dataclass
class RelaySession:
    """Connection state and command backlog shared by relay components."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    kind: Optional[ConnectionKind] = None
    transport: Optional[Transport] = None
    queue: Deque[Command] = field(default_factory=deque)

    @property
    def is_connected(self) -> bool:
        return (
            self.state == ConnectionState.CONNECTED
            and self.transport is not None
            and self.transport.is_open
        )

    def attach(self, transport: Transport) -> None:
        self.transport = transport
        self.kind = transport.kind
        self.state = ConnectionState.CONNECTED

    def detach(self) -> Optional[Transport]:
        transport = self.transport
        self.transport = None
        self.kind = None
        self.state = ConnectionState.DISCONNECTED
        return transport

    def status(self) -> Dict[str, Any]:
        return {
            "connected": self.is_connected,
            "state": self.state.value,
            "type": self.kind.value if self.kind is not None else None,
            "queuedCommands": len(self.queue),
        }


class ConnectionSupervisor:
    """Owns the heartbeat and retry timers for a :class:`RelaySession`.

    Only one retry loop can be active at a time; further reconnect requests
    while it runs are ignored.
    """

    def __init__(
        self,
        *,
        session: RelaySession,
        selector: TransportSelector,
        dispatcher: CommandDispatcher,
        on_data: DataCallback,
        resilience_config: ResilienceConfig,
    ) -> None:
        self._session = session
        self._selector = selector
        self._dispatcher = dispatcher
        self._on_data = on_data
        self._resilience = resilience_config

        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._retry_task: Optional[asyncio.Task[None]] = None
        self._stopping = False

        self._on_connected_callbacks: list[Callable[[ConnectionKind], Any]] = []
        self._on_disconnected_callbacks: list[
            Callable[[Optional[BaseException]], Any]
        ] = []

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def reconnect_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def register_connected_callback(self, callback: Callable[[ConnectionKind], Any]) -> None:
        """Register callback to be invoked after every successful connect."""
        self._on_connected_callbacks.append(callback)

    def register_disconnected_callback(
        self, callback: Callable[[Optional[BaseException]], Any]
    ) -> None:
        """Register callback to be invoked when the transport drops."""
        self._on_disconnected_callbacks.append(callback)

    async def connect(self) -> ConnectionState:
        """Run transport selection once and start the heartbeat on success.

        Schedules the retry loop if every tier failed.
        """

        self._stopping = False
        await self._cancel_task(self._retry_task)
        self._retry_task = None
        if self._session.is_connected:
            return ConnectionState.CONNECTED
        self._session.state = ConnectionState.CONNECTING
        state = await self._selector.connect(self._on_data, self._handle_closed)
        if state == ConnectionState.CONNECTED:
            await self._after_connect()
        else:
            LOGGER.warning("No transport available; retrying in %.1fs", self._interval)
            self.schedule_reconnect()
        return state

    def schedule_reconnect(self) -> bool:
        """Start the retry loop unless one is already running."""

        if self._stopping:
            return False
        if self.reconnect_pending:
            return False
        self._retry_task = asyncio.create_task(self._retry_loop())
        return True

    async def disconnect(self) -> None:
        """Stop timers and release the transport."""

        self._stopping = True
        await self._cancel_task(self._retry_task)
        self._retry_task = None
        await self._stop_heartbeat()

        transport = self._session.detach()
        if transport is not None:
            LOGGER.info("Closing %s transport", transport.kind.value)
            try:
                await transport.close()
            except Exception:
                LOGGER.warning("Error while closing transport", exc_info=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @property
    def _interval(self) -> float:
        return self._resilience.reconnect_interval_seconds

    async def _after_connect(self) -> None:
        kind = self._session.kind
        self._start_heartbeat()
        await self._dispatcher.drain()
        if kind is None:
            return
        for callback in self._on_connected_callbacks:
            try:
                result = callback(kind)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("Connected callback failed")

    async def _retry_loop(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self._interval)
            if self._stopping or self._session.is_connected:
                break

            self._session.state = ConnectionState.RECONNECTING
            LOGGER.info("Attempting to reconnect")
            try:
                state = await self._selector.connect(self._on_data, self._handle_closed)
            except Exception:
                LOGGER.exception("Transport selection failed unexpectedly")
                state = ConnectionState.DISCONNECTED

            if state == ConnectionState.CONNECTED:
                LOGGER.info("Reconnected via %s", getattr(self._session.kind, "value", "unknown"))
                # Release the guard first so a drop during the drain can
                # schedule a fresh retry loop.
                self._retry_task = None
                await self._after_connect()
                return

            self._session.state = ConnectionState.DISCONNECTED
            LOGGER.info("Reconnection attempt failed, retrying in %.1fs", self._interval)

    async def _handle_closed(
        self, transport: Transport, exc: Optional[BaseException]
    ) -> None:
        if self._stopping or transport is not self._session.transport:
            return

        LOGGER.warning(
            "%s transport closed: %s",
            transport.kind.value,
            exc if exc is not None else "closed by peer",
        )
        await self._stop_heartbeat()
        self._session.detach()
        with contextlib.suppress(Exception):
            await transport.close()

        for callback in self._on_disconnected_callbacks:
            try:
                result = callback(exc)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.warning("Disconnected callback failed", exc_info=True)

        self.schedule_reconnect()

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        await self._cancel_task(task)

    async def _heartbeat_loop(self) -> None:
        interval = self._resilience.heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if not self._session.is_connected:
                continue
            try:
                await self._dispatcher.submit(HeartbeatCommand())
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.warning("Heartbeat failed", exc_info=True)

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Task[None]]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
