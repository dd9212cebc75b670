"""Latest-value telemetry store with viewer fan-out."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
from typing import Any, Dict, Mapping, Set

from .core import TelemetryEvent, TelemetrySnapshot, Viewer

LOGGER = logging.getLogger(__name__)


class TelemetryStore:
    """Holds one :class:`TelemetrySnapshot` and forwards every update to viewers.

    Updates are last-write-wins in arrival order. A new viewer receives the
    full snapshot as an ``init`` message before any incremental event; the
    store lock keeps that ordering even while a broadcast is in flight. A
    viewer whose send fails is dropped silently.
    """

    def __init__(self) -> None:
        self._snapshot = TelemetrySnapshot()
        self._viewers: Set[Viewer] = set()
        self._lock = asyncio.Lock()

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._snapshot.as_dict())

    async def apply(self, event: TelemetryEvent) -> None:
        async with self._lock:
            self._snapshot.update(event)
            await self._broadcast_locked(event.as_message())

    async def subscribe(self, viewer: Viewer) -> bool:
        """Register ``viewer`` after sending it the current snapshot.

        Returns False if the initial send failed; the viewer is not kept.
        """

        async with self._lock:
            try:
                await viewer.send_json({"type": "init", "data": self._snapshot.as_dict()})
            except Exception as exc:
                LOGGER.debug("Viewer rejected initial snapshot: %s", exc)
                return False
            self._viewers.add(viewer)
        LOGGER.info("Viewer connected (%d total)", len(self._viewers))
        return True

    def unsubscribe(self, viewer: Viewer) -> None:
        if viewer in self._viewers:
            self._viewers.discard(viewer)
            LOGGER.info("Viewer disconnected (%d remaining)", len(self._viewers))

    async def broadcast(self, message: Mapping[str, Any]) -> None:
        """Send a non-telemetry message (e.g. heartbeat responses) to all viewers."""

        async with self._lock:
            await self._broadcast_locked(message)

    async def close_all(self) -> None:
        viewers = list(self._viewers)
        self._viewers.clear()
        for viewer in viewers:
            with contextlib.suppress(Exception):
                await viewer.close()

    async def _broadcast_locked(self, message: Mapping[str, Any]) -> None:
        for viewer in list(self._viewers):
            if viewer.closed:
                self._viewers.discard(viewer)
                continue
            try:
                await viewer.send_json(message)
            except Exception as exc:
                LOGGER.debug("Dropping viewer after failed send: %s", exc)
                self._viewers.discard(viewer)
