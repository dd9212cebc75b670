"""Tests for command formatting, decoding and the offline queue."""

import pytest

from gse_relay.commands import (
    CommandDispatcher,
    CommandFormatError,
    command_from_message,
    format_command,
)
from gse_relay.connection import ConnectionState, RelaySession
from gse_relay.core import (
    ConnectionKind,
    EmergencyStopCommand,
    HeartbeatCommand,
    ServoCommand,
    StatusCommand,
    UnknownCommand,
    ValveAction,
    ValveCommand,
)

from conftest import FakeTransport


@pytest.mark.parametrize(
    ("command", "wire"),
    [
        (ValveCommand("main", ValveAction.OPEN), "VALVE:main:OPEN\n"),
        (ValveCommand("vent", ValveAction.CLOSE), "VALVE:vent:CLOSE\n"),
        (ServoCommand("gimbal", 90.0), "SERVO:gimbal:90\n"),
        (ServoCommand("gimbal", 12.5), "SERVO:gimbal:12.5\n"),
        (EmergencyStopCommand(), "EMERGENCY:STOP\n"),
        (StatusCommand("ARMED"), "STATUS:ARMED\n"),
        (HeartbeatCommand(timestamp=1700000000000), "HEARTBEAT:1700000000000\n"),
        (UnknownCommand("ignite", "now"), "IGNITE:now\n"),
        (UnknownCommand("ping"), "PING:\n"),
    ],
)
def test_format_command(command, wire):
    assert format_command(command) == wire


def test_format_command_rejects_other_objects():
    with pytest.raises(TypeError):
        format_command("VALVE:main:OPEN")  # type: ignore[arg-type]


def test_command_from_message_decodes_viewer_commands():
    assert command_from_message({"type": "valve", "valve": "main", "state": "open"}) == (
        ValveCommand("main", ValveAction.OPEN)
    )
    assert command_from_message({"type": "VALVE", "valve": " vent ", "state": "closed"}) == (
        ValveCommand("vent", ValveAction.CLOSE)
    )
    assert command_from_message({"type": "servo", "servo": "gimbal", "value": "45"}) == (
        ServoCommand("gimbal", 45.0)
    )
    assert command_from_message({"type": "emergency", "action": "stop"}) == (
        EmergencyStopCommand()
    )
    assert command_from_message({"type": "status", "status": "ARMED"}) == (
        StatusCommand("ARMED")
    )
    assert command_from_message({"type": "heartbeat", "timestamp": 42}) == (
        HeartbeatCommand(timestamp=42)
    )
    assert command_from_message({"type": "ignite", "value": 3}) == UnknownCommand("ignite", 3)


@pytest.mark.parametrize(
    "message",
    [
        {},
        {"type": ""},
        {"type": "valve", "state": "open"},
        {"type": "valve", "valve": "main", "state": "sideways"},
        {"type": "valve", "valve": "ma:in", "state": "open"},
        {"type": "servo", "servo": "gimbal"},
        {"type": "servo", "servo": "gimbal", "value": "inf"},
        {"type": "servo", "value": 10},
        {"type": "status"},
    ],
)
def test_command_from_message_rejects_invalid(message):
    with pytest.raises(CommandFormatError):
        command_from_message(message)


def _connected_session(transport: FakeTransport) -> RelaySession:
    session = RelaySession()
    session.attach(transport)
    return session


@pytest.mark.asyncio
async def test_submit_sends_immediately_when_connected():
    transport = FakeTransport()
    await transport.open(lambda chunk: None, lambda exc: None)
    dispatcher = CommandDispatcher(_connected_session(transport))

    assert await dispatcher.submit(ValveCommand("main", ValveAction.OPEN)) is True

    assert transport.wire == ["VALVE:main:OPEN\n"]
    assert dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_submit_queues_while_disconnected_and_drains_in_order():
    session = RelaySession()
    dispatcher = CommandDispatcher(session)

    commands = [
        ValveCommand("main", ValveAction.OPEN),
        ServoCommand("gimbal", 10.0),
        EmergencyStopCommand(),
    ]
    for command in commands:
        assert await dispatcher.submit(command) is False
    assert dispatcher.pending_count == 3

    transport = FakeTransport()
    await transport.open(lambda chunk: None, lambda exc: None)
    session.attach(transport)

    assert await dispatcher.drain() == 3
    assert transport.sent == commands
    assert dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_heartbeats_are_never_queued():
    dispatcher = CommandDispatcher(RelaySession())

    assert await dispatcher.submit(HeartbeatCommand()) is False

    assert dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_submit_requeues_when_transport_drops_mid_send():
    transport = FakeTransport()
    await transport.open(lambda chunk: None, lambda exc: None)
    session = _connected_session(transport)
    dispatcher = CommandDispatcher(session)
    transport._open = False

    assert await dispatcher.submit(StatusCommand("ARMED")) is False

    assert list(session.queue) == [StatusCommand("ARMED")]


@pytest.mark.asyncio
async def test_failed_write_on_open_transport_is_not_queued():
    transport = FakeTransport(fail_sends=True)
    await transport.open(lambda chunk: None, lambda exc: None)
    dispatcher = CommandDispatcher(_connected_session(transport))

    assert await dispatcher.submit(EmergencyStopCommand()) is False

    assert dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_drain_stops_when_transport_goes_away():
    session = RelaySession()
    dispatcher = CommandDispatcher(session)
    await dispatcher.submit(ValveCommand("a", ValveAction.OPEN))
    await dispatcher.submit(ValveCommand("b", ValveAction.OPEN))

    transport = FakeTransport()
    await transport.open(lambda chunk: None, lambda exc: None)
    session.attach(transport)
    transport._open = False

    assert await dispatcher.drain() == 0
    assert dispatcher.pending_count == 2
    assert session.state == ConnectionState.CONNECTED
    assert session.kind == ConnectionKind.SERIAL
