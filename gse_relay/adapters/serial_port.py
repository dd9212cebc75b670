"""Serial transport for a directly attached microcontroller."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Iterable, Optional

import serial
from serial.tools import list_ports

from ..commands import format_command
from ..config import SerialConfig
from ..core import (
    ClosedCallback,
    Command,
    ConnectionKind,
    DataCallback,
    TransportError,
    TransportUnavailableError,
    maybe_await,
)

LOGGER = logging.getLogger(__name__)


def find_serial_port(vendor_hints: Iterable[str]) -> Optional[str]:
    """Return the first port that looks like a microcontroller board.

    A port matches when its manufacturer or description contains one of the
    vendor hints, or when it reports a USB product id.
    """

    hints = [hint.lower() for hint in vendor_hints if hint]
    for port in list_ports.comports():
        descriptor = " ".join(
            part for part in (port.manufacturer, port.description, port.product) if part
        ).lower()
        if any(hint in descriptor for hint in hints) or port.pid is not None:
            LOGGER.debug("Serial port %s matched (%s)", port.device, descriptor)
            return port.device
    return None


class SerialTransport:
    """Line-oriented serial link using pyserial.

    Blocking reads run in a worker thread with a short timeout so the read
    loop notices shutdown promptly.
    """

    kind = ConnectionKind.SERIAL

    def __init__(self, config: SerialConfig) -> None:
        self._config = config
        self._serial: Optional[serial.Serial] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._open = False
        self._closing = False
        self._error: Optional[BaseException] = None
        self.port: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, on_data: DataCallback, on_closed: ClosedCallback) -> None:
        port = self._config.port or await asyncio.to_thread(
            find_serial_port, self._config.vendor_hints
        )
        if not port:
            raise TransportUnavailableError("No serial ports available")

        try:
            handle = await asyncio.to_thread(
                serial.Serial,
                port=port,
                baudrate=self._config.baud_rate,
                timeout=self._config.read_timeout_seconds,
                write_timeout=self._config.read_timeout_seconds,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise TransportUnavailableError(f"Cannot open {port}: {exc}") from exc

        self._serial = handle
        self.port = port
        self._open = True
        self._closing = False
        self._error = None
        LOGGER.info("Serial connected: %s @ %d", port, self._config.baud_rate)
        self._reader_task = asyncio.create_task(self._read_loop(on_data, on_closed))

    async def send(self, command: Command) -> None:
        handle = self._serial
        if handle is None or not self._open:
            raise TransportError("Serial port is not open")

        payload = format_command(command).encode("utf-8")
        try:
            await asyncio.to_thread(handle.write, payload)
        except (serial.SerialException, OSError) as exc:
            # The read loop observes the flag and reports the loss.
            self._error = exc
            self._open = False
            raise TransportError(f"Serial write failed: {exc}") from exc

    async def close(self) -> None:
        self._closing = True
        self._open = False

        task = self._reader_task
        self._reader_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        handle = self._serial
        self._serial = None
        if handle is not None:
            with contextlib.suppress(serial.SerialException, OSError):
                await asyncio.to_thread(handle.close)
            LOGGER.info("Serial port %s closed", self.port)

    def _read_chunk(self) -> bytes:
        handle = self._serial
        if handle is None:
            return b""
        return handle.read(handle.in_waiting or 1)

    async def _read_loop(self, on_data: DataCallback, on_closed: ClosedCallback) -> None:
        error: Optional[BaseException] = None
        try:
            while self._open:
                chunk = await asyncio.to_thread(self._read_chunk)
                if not chunk:
                    continue
                text = chunk.decode("utf-8", errors="replace")
                try:
                    await maybe_await(on_data, text)
                except Exception:
                    LOGGER.exception("Serial data callback failed")
        except (serial.SerialException, OSError) as exc:
            error = exc

        if self._closing:
            return
        self._open = False
        await maybe_await(on_closed, error or self._error)
