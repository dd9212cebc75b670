"""Transport adapters for hardware, hub and simulated links."""

from .serial_port import SerialTransport, find_serial_port
from .simulation import SIMULATION_RANGES, SimulationTransport
from .websocket import HubWebSocketTransport

__all__ = [
    "HubWebSocketTransport",
    "SIMULATION_RANGES",
    "SerialTransport",
    "SimulationTransport",
    "find_serial_port",
]
