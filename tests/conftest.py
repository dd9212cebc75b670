import asyncio
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from gse_relay.commands import format_command
from gse_relay.config import RelayConfig, load_config
from gse_relay.core import (
    Command,
    ConnectionKind,
    TransportError,
    TransportUnavailableError,
    maybe_await,
)


class FakeTransport:
    """In-memory transport standing in for serial/websocket links."""

    def __init__(
        self,
        kind: ConnectionKind = ConnectionKind.SERIAL,
        *,
        available: bool = True,
        fail_sends: bool = False,
    ) -> None:
        self.kind = kind
        self.available = available
        self.fail_sends = fail_sends
        self.sent: list[Command] = []
        self.open_calls = 0
        self.close_calls = 0
        self._open = False
        self._on_data = None
        self._on_closed = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def wire(self) -> list[str]:
        return [format_command(command) for command in self.sent]

    async def open(self, on_data, on_closed) -> None:
        self.open_calls += 1
        if not self.available:
            raise TransportUnavailableError(f"{self.kind.value} not available")
        self._open = True
        self._on_data = on_data
        self._on_closed = on_closed

    async def send(self, command: Command) -> None:
        if not self._open:
            raise TransportError("not open")
        if self.fail_sends:
            raise TransportError("write failed")
        self.sent.append(command)

    async def close(self) -> None:
        self.close_calls += 1
        self._open = False

    async def feed(self, chunk: str) -> None:
        assert self._on_data is not None
        await maybe_await(self._on_data, chunk)

    async def drop(self, exc: Optional[BaseException] = None) -> None:
        self._open = False
        assert self._on_closed is not None
        await maybe_await(self._on_closed, exc)


class FakeTier:
    """Transport factory producing a fresh FakeTransport per connection attempt."""

    def __init__(self, kind: ConnectionKind = ConnectionKind.SERIAL, *, available: bool = True):
        self.kind = kind
        self.available = available
        self.instances: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(self.kind, available=self.available)
        self.instances.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.instances[-1]


class FakeViewer:
    """Records JSON messages; can be told to fail on send."""

    def __init__(self, *, fail: bool = False) -> None:
        self.messages: list[Any] = []
        self.fail = fail
        self.closed = False

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionResetError("viewer went away")
        self.messages.append(data)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def relay_config(tmp_path: Path) -> RelayConfig:
    config = load_config(tmp_path / "gse-relay.cfg")
    config.hub.host = "127.0.0.1"
    config.hub.port = 0
    config.resilience.reconnect_interval_seconds = 0.05
    config.resilience.heartbeat_interval_seconds = 0.05
    config.simulation.interval_seconds = 0.02
    config.simulation.seed = 1234
    config.client.connect_timeout_seconds = 1.0
    return config


@pytest.fixture
def eventually() -> Callable[..., Any]:
    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while not predicate():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout=timeout)

    return _wait
