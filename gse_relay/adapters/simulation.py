"""Synthetic telemetry source used when no hardware is reachable."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from typing import Dict, Optional, Set, Tuple

from ..commands import format_command
from ..config import SimulationConfig
from ..core import (
    Command,
    ClosedCallback,
    ConnectionKind,
    DataCallback,
    ServoCommand,
    TelemetryChannel,
    ValveAction,
    ValveCommand,
    maybe_await,
)

LOGGER = logging.getLogger(__name__)

SIMULATION_RANGES: Dict[TelemetryChannel, Tuple[float, float]] = {
    TelemetryChannel.PRESSURE: (50.0, 100.0),
    TelemetryChannel.TEMPERATURE: (20.0, 50.0),
    TelemetryChannel.FLOW_RATE: (5.0, 20.0),
    TelemetryChannel.VOLTAGE: (12.0, 15.0),
    TelemetryChannel.LOAD_CELL: (100.0, 1000.0),
}


class SimulationTransport:
    """Emits plausible sensor readings as wire text on a fixed cadence.

    Valve and servo commands are echoed back as status lines so a dashboard
    can exercise its actuator controls without hardware.
    """

    kind = ConnectionKind.SIMULATION

    def __init__(
        self, config: SimulationConfig, *, rng: Optional[random.Random] = None
    ) -> None:
        self._interval = config.interval_seconds
        self._rng = rng or random.Random(config.seed)
        self._on_data: Optional[DataCallback] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._echo_tasks: Set[asyncio.Task[None]] = set()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, on_data: DataCallback, on_closed: ClosedCallback) -> None:
        # Simulation never drops on its own, so on_closed is not retained.
        LOGGER.info("Starting simulation mode (interval=%.2fs)", self._interval)
        self._on_data = on_data
        self._open = True
        self._task = asyncio.create_task(self._run())

    async def send(self, command: Command) -> None:
        LOGGER.debug("Simulation received %s", format_command(command).strip())
        echo: Optional[str] = None
        if isinstance(command, ValveCommand):
            state = "OPEN" if command.action is ValveAction.OPEN else "CLOSED"
            echo = f"VALVE:{command.name}:{state}\n"
        elif isinstance(command, ServoCommand):
            echo = f"SERVO:{command.name}:{command.position}\n"

        if echo is not None:
            # Echoes run outside send(); the caller may hold the dispatcher lock.
            task = asyncio.create_task(self._deliver(echo))
            self._echo_tasks.add(task)
            task.add_done_callback(self._echo_tasks.discard)

    async def close(self) -> None:
        self._open = False
        task = self._task
        self._task = None
        for echo_task in list(self._echo_tasks):
            if echo_task is not asyncio.current_task():
                echo_task.cancel()
        self._echo_tasks.clear()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def generate_chunk(self) -> str:
        """One tick worth of readings, one line per channel."""

        lines = []
        for channel, (low, high) in SIMULATION_RANGES.items():
            value = round(self._rng.uniform(low, high), 2)
            lines.append(f"{channel.wire_tag.upper()}:{value}\n")
        return "".join(lines)

    async def _run(self) -> None:
        while self._open:
            await self._deliver(self.generate_chunk())
            await asyncio.sleep(self._interval)

    async def _deliver(self, chunk: str) -> None:
        if self._on_data is None:
            return
        try:
            await maybe_await(self._on_data, chunk)
        except Exception:
            LOGGER.exception("Simulation data callback failed")
