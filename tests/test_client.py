"""Tests for RelayClient against a live hub, simulation and fake tiers."""

import asyncio

import pytest
import pytest_asyncio

from gse_relay.client import RelayClient
from gse_relay.connection import ConnectionState
from gse_relay.core import (
    SCALAR_CHANNELS,
    ConnectionKind,
    HeartbeatCommand,
    TelemetryChannel,
    ValveAction,
    ValveCommand,
    ValveState,
)
from gse_relay.hub import RelayHub

from conftest import FakeTier


@pytest_asyncio.fixture
async def running_hub(relay_config, unused_tcp_port_factory):
    relay_config.hub.port = unused_tcp_port_factory()
    relay_config.resilience.heartbeat_interval_seconds = 10
    tier = FakeTier(ConnectionKind.SERIAL)
    hub = RelayHub(relay_config, transport_factories=[tier])
    await hub.start()
    yield hub, tier, f"ws://127.0.0.1:{hub.port}/ws"
    await hub.stop()


@pytest.mark.asyncio
async def test_client_receives_hub_telemetry(running_hub, relay_config, eventually):
    hub, tier, url = running_hub
    await tier.latest.feed("VALVE:main:OPEN\n")

    client = RelayClient(relay_config, hub_url=url)
    events = []
    client.on_data(events.append)
    try:
        assert await client.connect() == ConnectionState.CONNECTED
        assert client.connection_status()["type"] == "websocket"

        # The init snapshot arrives as individual events.
        await eventually(
            lambda: any(e.channel is TelemetryChannel.VALVE_STATUS for e in events)
        )
        valve = next(e for e in events if e.channel is TelemetryChannel.VALVE_STATUS)
        assert valve.name == "main"
        assert valve.value is ValveState.OPEN

        await eventually(lambda: hub.store.viewer_count == 1)
        await tier.latest.feed("PRESSURE:88.25\n")
        await eventually(
            lambda: any(
                e.channel is TelemetryChannel.PRESSURE and e.value == 88.25 for e in events
            )
        )
    finally:
        await client.disconnect()

    assert client.connection_status()["connected"] is False


@pytest.mark.asyncio
async def test_client_commands_reach_hub_device(running_hub, relay_config, eventually):
    hub, tier, url = running_hub
    client = RelayClient(relay_config, hub_url=url)
    try:
        await client.connect()

        assert await client.open_valve("main") is True
        assert await client.set_servo_position("gimbal", 30) is True
        assert await client.emergency_stop() is True
        assert await client.set_mission_status("ARMED") is True

        await eventually(lambda: len(tier.latest.sent) == 4)
    finally:
        await client.disconnect()

    assert tier.latest.wire == [
        "VALVE:main:OPEN\n",
        "SERVO:gimbal:30\n",
        "EMERGENCY:STOP\n",
        "STATUS:ARMED\n",
    ]


@pytest.mark.asyncio
async def test_client_tracks_hub_heartbeat_responses(running_hub, relay_config, eventually):
    _, tier, url = running_hub
    client = RelayClient(relay_config, hub_url=url)
    try:
        await client.connect()
        assert client.connection_status()["lastHeartbeatResponse"] is None

        assert await client.send_command(HeartbeatCommand()) is True
        await eventually(
            lambda: client.connection_status()["lastHeartbeatResponse"] is not None
        )
        assert isinstance(client.connection_status()["lastHeartbeatResponse"], int)
        assert tier.latest.sent == []
    finally:
        await client.disconnect()

    assert client.connection_status()["lastHeartbeatResponse"] is None


@pytest.mark.asyncio
async def test_client_falls_back_to_simulation(relay_config, unused_tcp_port_factory, eventually):
    relay_config.client.transports = ["websocket", "simulation"]
    client = RelayClient(
        relay_config, hub_url=f"ws://127.0.0.1:{unused_tcp_port_factory()}/ws"
    )
    events = []
    client.on_data(events.append)
    try:
        assert await client.connect() == ConnectionState.CONNECTED
        assert client.connection_status()["type"] == "simulation"

        await eventually(
            lambda: {e.channel for e in events} >= set(SCALAR_CHANNELS)
        )
        assert all(isinstance(e.value, float) for e in events)

        await client.close_valve("vent")
        await eventually(
            lambda: any(
                e.channel is TelemetryChannel.VALVE_STATUS and e.name == "vent" for e in events
            )
        )
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_commands_sent_after_reconnect(relay_config, eventually):
    tier = FakeTier(available=False)
    client = RelayClient(relay_config, transport_factories=[tier])
    try:
        assert await client.connect() == ConnectionState.DISCONNECTED
        assert await client.open_valve("main") is False
        assert client.connection_status()["queuedCommands"] == 1

        tier.available = True
        await eventually(lambda: client.is_connected)
        await eventually(lambda: client.connection_status()["queuedCommands"] == 0)

        assert [c for c in tier.latest.sent if isinstance(c, ValveCommand)] == [
            ValveCommand("main", ValveAction.OPEN)
        ]
    finally:
        await client.disconnect()


@pytest.mark.asyncio
async def test_listener_registration(relay_config):
    client = RelayClient(relay_config, transport_factories=[FakeTier()])
    received = []

    def listener(event):
        received.append(event)

    def broken(event):
        raise RuntimeError("listener bug")

    client.on_data(broken)
    client.on_data(listener)
    with pytest.raises(ValueError):
        client.on_data(listener)

    await client._handle_data("TEMPERATURE:30\nbad line\n")
    assert [e.value for e in received] == [30.0]

    client.remove_listener(listener)
    await client._handle_data("TEMPERATURE:31\n")
    assert len(received) == 1


@pytest.mark.asyncio
async def test_listener_can_command_on_simulated_echo(relay_config, eventually):
    relay_config.client.transports = ["simulation"]
    client = RelayClient(relay_config)
    results = []

    async def arm_on_valve(event):
        if event.channel is TelemetryChannel.VALVE_STATUS:
            results.append(await client.set_mission_status("ARMED"))

    client.on_data(arm_on_valve)
    try:
        await client.connect()

        assert await asyncio.wait_for(client.open_valve("main"), 1.0) is True
        await eventually(lambda: results == [True])
        assert client.connection_status()["queuedCommands"] == 0
    finally:
        await client.disconnect()
