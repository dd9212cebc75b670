"""End-to-end tests for the relay hub over real aiohttp sockets."""

import json

import aiohttp
import pytest
import pytest_asyncio

from gse_relay.core import ConnectionKind
from gse_relay.hub import RelayHub

from conftest import FakeTier


async def _receive_until(ws, predicate, *, limit=200):
    for _ in range(limit):
        message = await ws.receive_json(timeout=2.0)
        if predicate(message):
            return message
    raise AssertionError("expected message never arrived")


@pytest.fixture
def serial_tier():
    return FakeTier(ConnectionKind.SERIAL)


@pytest_asyncio.fixture
async def hub(relay_config, serial_tier, unused_tcp_port_factory):
    relay_config.hub.port = unused_tcp_port_factory()
    relay_config.resilience.heartbeat_interval_seconds = 10
    instance = RelayHub(relay_config, transport_factories=[serial_tier])
    await instance.start()
    yield instance
    await instance.stop()


def _url(hub, path):
    return f"http://127.0.0.1:{hub.port}{path}"


@pytest.mark.asyncio
async def test_viewer_receives_init_then_updates(hub, serial_tier, eventually):
    await serial_tier.latest.feed("TEMPERATURE:21.5\n")

    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(_url(hub, "/ws")) as ws:
            init = await ws.receive_json(timeout=2.0)
            assert init["type"] == "init"
            assert init["data"]["temperature"] == 21.5
            assert init["data"]["valveStates"] == {}

            await eventually(lambda: hub.store.viewer_count == 1)
            await serial_tier.latest.feed("PRESS")
            await serial_tier.latest.feed("URE:73.5\nVALVE:main:OPEN\n")

            pressure = await ws.receive_json(timeout=2.0)
            assert pressure["type"] == "pressure"
            assert pressure["value"] == 73.5
            assert "timestamp" in pressure

            valve = await ws.receive_json(timeout=2.0)
            assert valve == {
                "type": "valve",
                "name": "main",
                "value": "open",
                "timestamp": valve["timestamp"],
            }

    assert hub.store.snapshot()["pressure"] == 73.5


@pytest.mark.asyncio
async def test_malformed_device_lines_are_ignored(hub, serial_tier):
    await serial_tier.latest.feed("garbage\nALTITUDE:3\nVOLTAGE:12.6\n")

    snapshot = hub.store.snapshot()
    assert snapshot["voltage"] == 12.6
    assert set(snapshot) == {
        "pressure",
        "temperature",
        "flowRate",
        "voltage",
        "loadCell",
        "valveStates",
        "servoPositions",
    }


@pytest.mark.asyncio
async def test_viewer_commands_reach_the_device(hub, serial_tier, eventually):
    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(_url(hub, "/ws")) as ws:
            await ws.receive_json(timeout=2.0)
            await ws.send_json({"type": "valve", "valve": "main", "state": "open"})
            await ws.send_json({"type": "servo", "servo": "gimbal", "value": 45})
            await ws.send_str("not json")
            await ws.send_json({"type": "valve", "state": "open"})
            await ws.send_json({"type": "emergency", "action": "stop"})

            await eventually(lambda: len(serial_tier.latest.sent) >= 3)

    assert serial_tier.latest.wire == [
        "VALVE:main:OPEN\n",
        "SERVO:gimbal:45\n",
        "EMERGENCY:STOP\n",
    ]


@pytest.mark.asyncio
async def test_heartbeat_gets_a_response(hub, serial_tier):
    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(_url(hub, "/ws")) as ws:
            await ws.receive_json(timeout=2.0)
            await ws.send_json({"type": "heartbeat", "timestamp": 1})

            reply = await _receive_until(
                ws, lambda message: message["type"] == "heartbeat_response"
            )

    assert isinstance(reply["timestamp"], int)
    assert serial_tier.latest.sent == []


@pytest.mark.asyncio
async def test_status_endpoint(hub, serial_tier, eventually):
    await serial_tier.latest.feed("LOADCELL:512\n")

    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(_url(hub, "/ws")) as ws:
            await ws.receive_json(timeout=2.0)
            await eventually(lambda: hub.store.viewer_count == 1)

            async with session.get(_url(hub, "/api/status")) as response:
                assert response.status == 200
                body = await response.json()

    assert body["connected"] is True
    assert body["mode"] == "serial"
    assert body["clients"] == 1
    assert body["queued"] == 0
    assert body["data"]["loadCell"] == 512.0


@pytest.mark.asyncio
async def test_health_endpoint_ok_on_hardware(hub):
    async with aiohttp.ClientSession() as session:
        async with session.get(_url(hub, "/healthz")) as response:
            assert response.status == 200
            body = json.loads(await response.text())

    assert body["status"] == "ok"
    components = {item["name"]: item for item in body["components"]}
    assert components["transport"]["detail"] == "serial"
    assert components["viewers"]["healthy"] is True


@pytest.mark.asyncio
async def test_commands_queue_while_device_is_away(hub, serial_tier, eventually):
    first = serial_tier.latest
    serial_tier.available = False
    await first.drop(ConnectionResetError("unplugged"))

    assert hub.status()["connected"] is False
    assert hub.status()["mode"] is None

    await hub.handle_command({"type": "valve", "valve": "vent", "state": "close"})
    await hub.handle_command({"type": "status", "status": "ARMED"})
    assert hub.status()["queued"] == 2

    serial_tier.available = True
    await eventually(lambda: hub.status()["connected"] and hub.status()["queued"] == 0)

    assert serial_tier.latest is not first
    assert serial_tier.latest.wire == ["VALVE:vent:CLOSE\n", "STATUS:ARMED\n"]


@pytest.mark.asyncio
async def test_simulation_mode_is_degraded(relay_config, unused_tcp_port_factory, eventually):
    relay_config.hub.port = unused_tcp_port_factory()
    simulation = FakeTier(ConnectionKind.SIMULATION)
    hub = RelayHub(
        relay_config,
        transport_factories=[FakeTier(ConnectionKind.SERIAL, available=False), simulation],
    )
    await hub.start()
    try:
        assert hub.status()["connected"] is False
        assert hub.status()["mode"] == "simulation"

        async with aiohttp.ClientSession() as session:
            async with session.get(_url(hub, "/healthz")) as response:
                assert response.status == 503
                body = await response.json()
        assert body["status"] == "degraded"
    finally:
        await hub.stop()


@pytest.mark.asyncio
async def test_hub_with_real_simulation_tier(relay_config, unused_tcp_port_factory, eventually):
    relay_config.hub.port = unused_tcp_port_factory()
    relay_config.hub.transports = ["simulation"]
    hub = RelayHub(relay_config)
    await hub.start()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(_url(hub, "/ws")) as ws:
                await ws.receive_json(timeout=2.0)
                reading = await _receive_until(
                    ws, lambda message: message["type"] == "pressure"
                )
                assert 50.0 <= reading["value"] <= 100.0

                await ws.send_json({"type": "valve", "valve": "main", "state": "open"})
                echo = await _receive_until(
                    ws, lambda message: message["type"] == "valve"
                )
                assert echo["name"] == "main"
                assert echo["value"] == "open"

        await eventually(lambda: hub.store.snapshot()["valveStates"] == {"main": "open"})
    finally:
        await hub.stop()
