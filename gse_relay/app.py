"""Process entry-points for the relay hub and relay client."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from abc import ABC, abstractmethod
from typing import Any, Optional

from .client import RelayClient
from .config import RelayConfig, load_config
from .core import TelemetryEvent
from .hub import RelayHub
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


class _RelayProcess(ABC):
    """Shared run/stop plumbing: run until SIGINT/SIGTERM, then clean up."""

    name = "gse-relay"

    def __init__(self, config: Optional[RelayConfig] = None) -> None:
        self._config = config or load_config()
        self._shutdown_event: Optional[asyncio.Event] = None

    @classmethod
    def start(cls, config: Optional[RelayConfig] = None, **options: Any) -> None:
        instance = cls(config=config, **options)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("%s received shutdown signal", instance.name)

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(self) -> None:
        self._shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_shutdown)

        LOGGER.info("%s starting with config: %s", self.name, self._config.path)
        try:
            await self._start_services()
            await self._shutdown_event.wait()
            LOGGER.info("%s received shutdown signal", self.name)
        finally:
            await self._stop_services()
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(sig)

    @abstractmethod
    async def _start_services(self) -> None:
        """Start the process's services."""

    @abstractmethod
    async def _stop_services(self) -> None:
        """Stop whatever _start_services started."""


class RelayHubApp(_RelayProcess):
    """Runs a :class:`RelayHub` until shutdown."""

    name = "gse-relay hub"

    def __init__(self, config: Optional[RelayConfig] = None) -> None:
        super().__init__(config)
        self._hub: Optional[RelayHub] = None

    async def _start_services(self) -> None:
        self._hub = RelayHub(self._config)
        await self._hub.start()

    async def _stop_services(self) -> None:
        if self._hub is not None:
            await self._hub.stop()
            self._hub = None


class RelayClientApp(_RelayProcess):
    """Runs a :class:`RelayClient` that logs every telemetry event."""

    name = "gse-relay client"

    def __init__(
        self, config: Optional[RelayConfig] = None, *, hub_url: Optional[str] = None
    ) -> None:
        super().__init__(config)
        self._hub_url = hub_url
        self._client: Optional[RelayClient] = None

    async def _start_services(self) -> None:
        self._client = RelayClient(self._config, hub_url=self._hub_url)
        self._client.on_data(_log_event)
        await self._client.connect()

    async def _stop_services(self) -> None:
        if self._client is not None:
            await self._client.disconnect()
            self._client = None


def _log_event(event: TelemetryEvent) -> None:
    if event.name is not None:
        LOGGER.info("%s[%s] = %s", event.channel.value, event.name, _plain(event.value))
    else:
        LOGGER.info("%s = %s", event.channel.value, _plain(event.value))


def _plain(value: object) -> object:
    return getattr(value, "value", value)
