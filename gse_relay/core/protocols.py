"""Protocol definitions for transports, viewers and callbacks."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol

from .models import Command, ConnectionKind, TelemetryEvent

DataCallback = Callable[[str], Awaitable[None] | None]
ClosedCallback = Callable[[Optional[BaseException]], Awaitable[None] | None]
EventListener = Callable[[TelemetryEvent], Awaitable[None] | None]


class TransportError(RuntimeError):
    """Raised when a transport fails to send or loses its link."""


class TransportUnavailableError(TransportError):
    """Raised when a transport tier cannot be opened at all."""


class Transport(Protocol):
    """Byte/text link to the hardware (or to a relay hub).

    A transport produces a stream of incoming text chunks in the
    ``TYPE:VALUE`` wire format and accepts outgoing commands. It reports an
    unexpected loss of the link through ``on_closed`` exactly once.
    """

    kind: ConnectionKind

    @property
    def is_open(self) -> bool:
        ...

    async def open(self, on_data: DataCallback, on_closed: ClosedCallback) -> None:
        """Open the link and start delivering chunks.

        Raises:
            TransportUnavailableError: If the link cannot be established.
        """
        ...

    async def send(self, command: Command) -> None:
        """Transmit one command.

        Raises:
            TransportError: If the write fails.
        """
        ...

    async def close(self) -> None:
        """Release the link. Does not invoke ``on_closed``."""
        ...


class Viewer(Protocol):
    """A connected dashboard receiving JSON messages."""

    @property
    def closed(self) -> bool:
        ...

    async def send_json(self, data: Any) -> None:
        ...

    async def close(self) -> Any:
        ...
