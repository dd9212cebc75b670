"""Parsing of ``TYPE:VALUE`` telemetry lines into typed events."""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Mapping, Optional

from .core import (
    CHANNEL_WIRE_TAGS,
    SCALAR_CHANNELS,
    WIRE_TAG_CHANNELS,
    TelemetryChannel,
    TelemetryEvent,
    ValveState,
)

LOGGER = logging.getLogger(__name__)

_VALVE_OPEN_WORDS = frozenset({"open", "opened", "1", "true", "on"})
_VALVE_CLOSED_WORDS = frozenset({"close", "closed", "0", "false", "off"})


def parse(raw: str) -> List[TelemetryEvent]:
    """Parse a block of wire text into zero or more telemetry events.

    Malformed and unrecognised lines are dropped; this function never raises.
    """

    events: List[TelemetryEvent] = []
    for line in raw.split("\n"):
        event = parse_line(line)
        if event is not None:
            events.append(event)
    return events


def parse_line(line: str) -> Optional[TelemetryEvent]:
    text = line.strip()
    if not text:
        return None

    type_part, sep, value_part = text.partition(":")
    type_part = type_part.strip()
    value_part = value_part.strip()
    if not sep or not type_part or not value_part:
        LOGGER.debug("Dropping malformed telemetry line: %r", text)
        return None

    channel = WIRE_TAG_CHANNELS.get(type_part.lower())
    if channel is None:
        LOGGER.info("Ignoring unknown telemetry type %r", type_part)
        return None

    if channel is TelemetryChannel.VALVE_STATUS:
        return _parse_valve(value_part, text)
    if channel is TelemetryChannel.SERVO_STATUS:
        return _parse_servo(value_part, text)

    number = _parse_number(value_part)
    if number is None:
        LOGGER.debug("Dropping non-numeric %s value: %r", channel.value, text)
        return None
    return TelemetryEvent(channel=channel, value=number)


def _parse_number(text: str) -> Optional[float]:
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _split_nested(value_part: str, line: str) -> Optional[tuple[str, str]]:
    name, sep, sub_value = value_part.partition(":")
    name = name.strip()
    sub_value = sub_value.strip()
    if not sep or not name or not sub_value:
        LOGGER.debug("Dropping line without name:value pair: %r", line)
        return None
    return name, sub_value


def _parse_valve(value_part: str, line: str) -> Optional[TelemetryEvent]:
    nested = _split_nested(value_part, line)
    if nested is None:
        return None
    name, sub_value = nested

    word = sub_value.lower()
    if word in _VALVE_OPEN_WORDS:
        state = ValveState.OPEN
    elif word in _VALVE_CLOSED_WORDS:
        state = ValveState.CLOSED
    else:
        LOGGER.debug("Dropping valve line with unknown state: %r", line)
        return None
    return TelemetryEvent(channel=TelemetryChannel.VALVE_STATUS, value=state, name=name)


def _parse_servo(value_part: str, line: str) -> Optional[TelemetryEvent]:
    nested = _split_nested(value_part, line)
    if nested is None:
        return None
    name, sub_value = nested

    position = _parse_number(sub_value)
    if position is None:
        LOGGER.debug("Dropping servo line with non-numeric position: %r", line)
        return None
    return TelemetryEvent(
        channel=TelemetryChannel.SERVO_STATUS, value=position, name=name
    )


class LineAssembler:
    """Reassembles newline-delimited lines from arbitrarily split chunks."""

    def __init__(self, max_pending: int = 4096) -> None:
        self._pending = ""
        self._max_pending = max_pending

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: str) -> List[str]:
        data = self._pending + chunk.replace("\r\n", "\n").replace("\r", "\n")
        *lines, self._pending = data.split("\n")
        if len(self._pending) > self._max_pending:
            LOGGER.warning(
                "Discarding %d bytes of unterminated serial input", len(self._pending)
            )
            self._pending = ""
        return [line for line in lines if line.strip()]

    def reset(self) -> None:
        self._pending = ""


# ---------------------------------------------------------------------------
# Viewer envelope -> wire text
# ---------------------------------------------------------------------------


def message_to_lines(message: Mapping[str, Any]) -> List[str]:
    """Translate a hub JSON message back into wire lines.

    Lets a relay client connected to a hub feed the same parser as a client
    reading a serial device. ``init`` snapshots expand to one line per value.
    Messages without telemetry content yield no lines.
    """

    message_type = str(message.get("type", "")).lower()
    if message_type == "init":
        data = message.get("data")
        return snapshot_to_lines(data if isinstance(data, Mapping) else {})

    channel = WIRE_TAG_CHANNELS.get(message_type)
    if channel is None:
        return []

    value = message.get("value")
    if value is None:
        return []

    tag = CHANNEL_WIRE_TAGS[channel].upper()
    if channel.is_scalar:
        return [f"{tag}:{value}"]

    name = message.get("name")
    if not name:
        return []
    return [f"{tag}:{name}:{value}"]


def snapshot_to_lines(data: Mapping[str, Any]) -> List[str]:
    lines: List[str] = []
    for channel in SCALAR_CHANNELS:
        if channel.value in data:
            lines.append(f"{channel.wire_tag.upper()}:{data[channel.value]}")

    valve_states = data.get("valveStates")
    if isinstance(valve_states, Mapping):
        lines.extend(
            f"VALVE:{name}:{_valve_word(state)}" for name, state in valve_states.items()
        )

    servo_positions = data.get("servoPositions")
    if isinstance(servo_positions, Mapping):
        lines.extend(
            f"SERVO:{name}:{position}" for name, position in servo_positions.items()
        )
    return lines


def _valve_word(state: Any) -> str:
    # Older hubs reported valve states as booleans.
    if isinstance(state, bool):
        return ValveState.OPEN.value if state else ValveState.CLOSED.value
    return str(state)


def parse_lines(lines: Iterable[str]) -> List[TelemetryEvent]:
    events: List[TelemetryEvent] = []
    for line in lines:
        event = parse_line(line)
        if event is not None:
            events.append(event)
    return events
