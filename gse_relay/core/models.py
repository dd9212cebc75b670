"""Domain models for telemetry and commands."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


class TelemetryChannel(str, Enum):
    """Fixed set of channels reported by the ground support hardware."""

    PRESSURE = "pressure"
    TEMPERATURE = "temperature"
    FLOW_RATE = "flowRate"
    VOLTAGE = "voltage"
    LOAD_CELL = "loadCell"
    VALVE_STATUS = "valveStatus"
    SERVO_STATUS = "servoStatus"

    @property
    def is_scalar(self) -> bool:
        return self not in (TelemetryChannel.VALVE_STATUS, TelemetryChannel.SERVO_STATUS)

    @property
    def wire_tag(self) -> str:
        return CHANNEL_WIRE_TAGS[self]


SCALAR_CHANNELS = tuple(channel for channel in TelemetryChannel if channel.is_scalar)

CHANNEL_WIRE_TAGS: Dict[TelemetryChannel, str] = {
    TelemetryChannel.PRESSURE: "pressure",
    TelemetryChannel.TEMPERATURE: "temperature",
    TelemetryChannel.FLOW_RATE: "flow",
    TelemetryChannel.VOLTAGE: "voltage",
    TelemetryChannel.LOAD_CELL: "loadcell",
    TelemetryChannel.VALVE_STATUS: "valve",
    TelemetryChannel.SERVO_STATUS: "servo",
}

# Lower-cased wire tag -> channel. Includes the camelCase channel names so
# lines echoed from a snapshot parse the same way as device lines.
WIRE_TAG_CHANNELS: Dict[str, TelemetryChannel] = {
    **{tag: channel for channel, tag in CHANNEL_WIRE_TAGS.items()},
    "flowrate": TelemetryChannel.FLOW_RATE,
}


class ValveState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ValveAction(str, Enum):
    OPEN = "open"
    CLOSE = "close"


class ConnectionKind(str, Enum):
    """Which transport tier a relay session ended up on."""

    WEBSOCKET = "websocket"
    SERIAL = "serial"
    SIMULATION = "simulation"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _now_millis() -> int:
    return int(time.time() * 1000)


TelemetryValue = Union[float, ValveState]


@dataclass(slots=True, frozen=True)
class TelemetryEvent:
    """A single parsed reading. ``name`` is only set for valve and servo events."""

    channel: TelemetryChannel
    value: TelemetryValue
    name: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def as_message(self) -> Dict[str, Any]:
        value: Any = self.value.value if isinstance(self.value, ValveState) else self.value
        message: Dict[str, Any] = {
            "type": self.channel.wire_tag,
            "value": value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.name is not None:
            message["name"] = self.name
        return message


@dataclass(slots=True)
class TelemetrySnapshot:
    """Last known value per channel. No history is kept."""

    pressure: float = 0.0
    temperature: float = 0.0
    flow_rate: float = 0.0
    voltage: float = 0.0
    load_cell: float = 0.0
    valve_states: Dict[str, ValveState] = field(default_factory=dict)
    servo_positions: Dict[str, float] = field(default_factory=dict)

    def update(self, event: TelemetryEvent) -> None:
        channel = event.channel
        if channel is TelemetryChannel.VALVE_STATUS:
            if event.name is None or not isinstance(event.value, ValveState):
                raise ValueError("Valve events require a name and a valve state")
            self.valve_states[event.name] = event.value
        elif channel is TelemetryChannel.SERVO_STATUS:
            if event.name is None:
                raise ValueError("Servo events require a name")
            self.servo_positions[event.name] = float(event.value)
        else:
            setattr(self, _SCALAR_FIELDS[channel], float(event.value))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "pressure": self.pressure,
            "temperature": self.temperature,
            "flowRate": self.flow_rate,
            "voltage": self.voltage,
            "loadCell": self.load_cell,
            "valveStates": {name: state.value for name, state in self.valve_states.items()},
            "servoPositions": dict(self.servo_positions),
        }


_SCALAR_FIELDS: Dict[TelemetryChannel, str] = {
    TelemetryChannel.PRESSURE: "pressure",
    TelemetryChannel.TEMPERATURE: "temperature",
    TelemetryChannel.FLOW_RATE: "flow_rate",
    TelemetryChannel.VOLTAGE: "voltage",
    TelemetryChannel.LOAD_CELL: "load_cell",
}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class CommandTag(str, Enum):
    VALVE = "valve"
    SERVO = "servo"
    EMERGENCY = "emergency"
    STATUS = "status"
    HEARTBEAT = "heartbeat"


@dataclass(slots=True, frozen=True)
class ValveCommand:
    name: str
    action: ValveAction

    tag = CommandTag.VALVE

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.tag.value, "valve": self.name, "state": self.action.value}


@dataclass(slots=True, frozen=True)
class ServoCommand:
    name: str
    position: float

    tag = CommandTag.SERVO

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.tag.value, "servo": self.name, "value": self.position}


@dataclass(slots=True, frozen=True)
class EmergencyStopCommand:
    tag = CommandTag.EMERGENCY

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.tag.value, "action": "stop"}


@dataclass(slots=True, frozen=True)
class StatusCommand:
    value: str

    tag = CommandTag.STATUS

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.tag.value, "status": self.value}


@dataclass(slots=True, frozen=True)
class HeartbeatCommand:
    timestamp: int = field(default_factory=_now_millis)

    tag = CommandTag.HEARTBEAT

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.tag.value, "timestamp": self.timestamp}


@dataclass(slots=True, frozen=True)
class UnknownCommand:
    """Viewer command with a tag outside :class:`CommandTag`; relayed verbatim."""

    tag: str
    value: Any = None

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.tag, "value": self.value}


Command = Union[
    ValveCommand,
    ServoCommand,
    EmergencyStopCommand,
    StatusCommand,
    HeartbeatCommand,
    UnknownCommand,
]
