"""Command formatting and dispatch for the relay."""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from .core import (
    Command,
    CommandTag,
    EmergencyStopCommand,
    HeartbeatCommand,
    ServoCommand,
    StatusCommand,
    TransportError,
    UnknownCommand,
    ValveAction,
    ValveCommand,
)

if TYPE_CHECKING:
    from .connection import RelaySession

LOGGER = logging.getLogger(__name__)


class CommandFormatError(ValueError):
    """Raised when a viewer message cannot be turned into a command."""


class _Outcome(Enum):
    SENT = "sent"
    LOST = "lost"
    DISCONNECTED = "disconnected"


def format_command(command: Command) -> str:
    """Render a command in the line-delimited wire format."""

    if isinstance(command, ValveCommand):
        return f"VALVE:{command.name}:{command.action.value.upper()}\n"
    if isinstance(command, ServoCommand):
        return f"SERVO:{command.name}:{_format_number(command.position)}\n"
    if isinstance(command, EmergencyStopCommand):
        return "EMERGENCY:STOP\n"
    if isinstance(command, StatusCommand):
        return f"STATUS:{command.value}\n"
    if isinstance(command, HeartbeatCommand):
        return f"{CommandTag.HEARTBEAT.value.upper()}:{command.timestamp}\n"
    if isinstance(command, UnknownCommand):
        value = "" if command.value is None else command.value
        return f"{command.tag.upper()}:{value}\n"
    raise TypeError(f"Unsupported command type: {type(command).__name__}")


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def command_from_message(message: Mapping[str, Any]) -> Command:
    """Decode a viewer JSON command.

    Raises:
        CommandFormatError: If required fields are missing or invalid.
    """

    raw_type = message.get("type")
    if not isinstance(raw_type, str) or not raw_type.strip():
        raise CommandFormatError("Command is missing a 'type' field")
    tag = raw_type.strip().lower()

    if tag == CommandTag.VALVE.value:
        name = _require_name(message, "valve")
        state = str(message.get("state", "")).strip().lower()
        if state == ValveAction.OPEN.value:
            action = ValveAction.OPEN
        elif state in (ValveAction.CLOSE.value, "closed"):
            action = ValveAction.CLOSE
        else:
            raise CommandFormatError(f"Invalid valve state: {message.get('state')!r}")
        return ValveCommand(name=name, action=action)

    if tag == CommandTag.SERVO.value:
        name = _require_name(message, "servo")
        try:
            position = float(message.get("value"))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise CommandFormatError(
                f"Invalid servo position: {message.get('value')!r}"
            ) from None
        if not math.isfinite(position):
            raise CommandFormatError(f"Invalid servo position: {position!r}")
        return ServoCommand(name=name, position=position)

    if tag == CommandTag.EMERGENCY.value:
        return EmergencyStopCommand()

    if tag == CommandTag.STATUS.value:
        status = message.get("status")
        if status is None or str(status).strip() == "":
            raise CommandFormatError("Status command requires a 'status' field")
        return StatusCommand(value=str(status).strip())

    if tag == CommandTag.HEARTBEAT.value:
        timestamp = message.get("timestamp")
        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            return HeartbeatCommand(timestamp=int(timestamp))
        return HeartbeatCommand()

    return UnknownCommand(tag=tag, value=message.get("value"))


def _require_name(message: Mapping[str, Any], key: str) -> str:
    value = message.get(key)
    if not isinstance(value, str) or not value.strip():
        raise CommandFormatError(f"Command requires a '{key}' name")
    name = value.strip()
    if ":" in name or "\n" in name:
        raise CommandFormatError(f"Invalid {key} name: {name!r}")
    return name


class CommandDispatcher:
    """Sends commands over the session transport or queues them while offline.

    The queue is FIFO and unbounded. Heartbeats are never queued.
    """

    def __init__(self, session: RelaySession) -> None:
        self._session = session
        self._lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._session.queue)

    async def submit(self, command: Command) -> bool:
        """Transmit ``command`` now if connected, otherwise queue it.

        Returns True only when the command was written to the transport.
        """

        async with self._lock:
            if not self._session.is_connected:
                self._enqueue(command, "transport not connected")
                return False

            outcome = await self._transmit(command)
            if outcome is _Outcome.DISCONNECTED:
                self._enqueue(command, "transport dropped during send")
                return False
            return outcome is _Outcome.SENT

    async def drain(self) -> int:
        """Flush queued commands in submission order.

        Stops early, leaving the remaining commands queued, if the transport
        drops again. Returns the number of commands written.
        """

        sent = 0
        async with self._lock:
            queue = self._session.queue
            if queue:
                LOGGER.info("Draining %d queued command(s)", len(queue))
            while queue and self._session.is_connected:
                command = queue[0]
                outcome = await self._transmit(command)
                if outcome is _Outcome.DISCONNECTED:
                    LOGGER.warning(
                        "Transport dropped while draining; %d command(s) remain queued",
                        len(queue),
                    )
                    break
                queue.popleft()
                if outcome is _Outcome.SENT:
                    sent += 1
        return sent

    def _enqueue(self, command: Command, reason: str) -> None:
        if isinstance(command, HeartbeatCommand):
            LOGGER.debug("Dropping heartbeat (%s)", reason)
            return
        self._session.queue.append(command)
        LOGGER.warning(
            "Queuing command %s (%s); %d pending",
            format_command(command).strip(),
            reason,
            len(self._session.queue),
        )

    async def _transmit(self, command: Command) -> _Outcome:
        transport = self._session.transport
        if transport is None or not transport.is_open:
            return _Outcome.DISCONNECTED

        wire = format_command(command).strip()
        try:
            await transport.send(command)
        except TransportError as exc:
            if not transport.is_open:
                return _Outcome.DISCONNECTED
            LOGGER.error("Failed to send command %s: %s", wire, exc)
            return _Outcome.LOST

        if isinstance(command, HeartbeatCommand):
            LOGGER.debug("Sent heartbeat %s", wire)
        else:
            LOGGER.info("Sent command %s via %s", wire, transport.kind.value)
        return _Outcome.SENT
