"""Ordered transport selection with simulation fallback."""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence

from .core import DataCallback, Transport, TransportUnavailableError

if TYPE_CHECKING:
    from .config import RelayConfig
    from .connection import ConnectionState, RelaySession

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]
SessionClosedCallback = Callable[
    [Transport, Optional[BaseException]], Awaitable[None] | None
]


class TransportSelector:
    """Tries each transport tier in order until one opens.

    A tier that raises :class:`TransportUnavailableError` (or fails in any
    other way) is logged and skipped. When every tier fails the session is
    left disconnected; with the simulation tier configured that cannot
    happen.
    """

    def __init__(
        self, session: RelaySession, factories: Sequence[TransportFactory]
    ) -> None:
        if not factories:
            raise ValueError("At least one transport tier is required")
        self._session = session
        self._factories = list(factories)

    async def connect(
        self, on_data: DataCallback, on_closed: SessionClosedCallback
    ) -> ConnectionState:
        from .connection import ConnectionState

        for factory in self._factories:
            transport = factory()
            kind = transport.kind.value
            LOGGER.debug("Trying %s transport", kind)
            try:
                await transport.open(on_data, functools.partial(on_closed, transport))
            except TransportUnavailableError as exc:
                LOGGER.info("%s transport unavailable: %s", kind, exc)
                continue
            except Exception as exc:
                LOGGER.warning("%s transport failed to open: %s", kind, exc)
                continue

            self._session.attach(transport)
            LOGGER.info("Connected via %s transport", kind)
            return ConnectionState.CONNECTED

        self._session.detach()
        return ConnectionState.DISCONNECTED


def build_transport_factories(
    config: RelayConfig, names: Sequence[str], *, hub_url: Optional[str] = None
) -> list[TransportFactory]:
    """Map configured tier names to transport factories.

    The simulation tier is omitted when ``[simulation] enabled`` is false.
    """

    from .adapters import HubWebSocketTransport, SerialTransport, SimulationTransport

    factories: list[TransportFactory] = []
    for name in names:
        if name == "websocket":
            url = hub_url or config.client.hub_url
            timeout = config.client.connect_timeout_seconds
            factories.append(
                lambda url=url, timeout=timeout: HubWebSocketTransport(
                    url, connect_timeout=timeout
                )
            )
        elif name == "serial":
            factories.append(lambda: SerialTransport(config.serial))
        elif name == "simulation":
            if not config.simulation.enabled:
                LOGGER.debug("Simulation tier disabled by configuration")
                continue
            factories.append(lambda: SimulationTransport(config.simulation))
        else:
            raise ValueError(f"Unknown transport: {name}")
    return factories
