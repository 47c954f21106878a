"""Reclaim half-open connections with an application-level ping/pong sweep."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

from chat.messaging.protocol import TRANSPORT_ERRORS

if TYPE_CHECKING:
    from chat.session.hub import ChatHub

DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 30.0
HEARTBEAT_CLOSE_CODE = 1001
HEARTBEAT_CLOSE_REASON = "heartbeat_timeout"

logger = structlog.get_logger()


class LivenessMonitor:
    """Periodically probe every connection and terminate the silent ones.

    Each sweep marks live connections as awaiting a pong and sends them a
    ping. A connection still marked at the next sweep has stayed silent for a
    whole interval and is closed, so a dead peer is reclaimed within two
    intervals. Any inbound frame clears the mark, not only a pong.
    """

    def __init__(self, hub: ChatHub, interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS) -> None:
        self._hub = hub
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._check_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def sweep(self) -> int:
        """Run one probe round. Returns the number of connections terminated."""
        stale = await self._hub.probe_liveness()
        for connection in stale:
            logger.info("heartbeat timeout, disconnecting", connection_id=connection.connection_id)
            with contextlib.suppress(*TRANSPORT_ERRORS):
                await connection.close(code=HEARTBEAT_CLOSE_CODE, reason=HEARTBEAT_CLOSE_REASON)
            await self._hub.on_connection_closed(connection)
        return len(stale)

    async def _check_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("liveness sweep failed")
