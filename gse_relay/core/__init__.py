"""Core primitives for gse-relay."""

from .models import (
    CHANNEL_WIRE_TAGS,
    SCALAR_CHANNELS,
    WIRE_TAG_CHANNELS,
    Command,
    CommandTag,
    ConnectionKind,
    EmergencyStopCommand,
    HeartbeatCommand,
    ServoCommand,
    StatusCommand,
    TelemetryChannel,
    TelemetryEvent,
    TelemetrySnapshot,
    UnknownCommand,
    ValveAction,
    ValveCommand,
    ValveState,
)
from .protocols import (
    ClosedCallback,
    DataCallback,
    EventListener,
    Transport,
    TransportError,
    TransportUnavailableError,
    Viewer,
)
from .utils import maybe_await

__all__ = [
    "CHANNEL_WIRE_TAGS",
    "ClosedCallback",
    "Command",
    "CommandTag",
    "ConnectionKind",
    "DataCallback",
    "EmergencyStopCommand",
    "EventListener",
    "HeartbeatCommand",
    "SCALAR_CHANNELS",
    "ServoCommand",
    "StatusCommand",
    "TelemetryChannel",
    "TelemetryEvent",
    "TelemetrySnapshot",
    "Transport",
    "TransportError",
    "TransportUnavailableError",
    "UnknownCommand",
    "ValveAction",
    "ValveCommand",
    "ValveState",
    "Viewer",
    "WIRE_TAG_CHANNELS",
    "maybe_await",
]
