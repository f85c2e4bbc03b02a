"""Close connections that stop sending pings."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = structlog.get_logger()

DEFAULT_HEARTBEAT_TIMEOUT_SECONDS = 60.0
_CHECK_INTERVAL_SECONDS = 5.0


class HeartbeatMonitor:
    def __init__(
        self,
        timeout_seconds: float = DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
        check_interval_seconds: float = _CHECK_INTERVAL_SECONDS,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._check_interval_seconds = check_interval_seconds
        self._last_ping: dict[str, float] = {}  # connection_id -> time.monotonic()
        self._task: asyncio.Task[None] | None = None

    def record_connect(self, connection_id: str) -> None:
        self._last_ping[connection_id] = time.monotonic()

    def record_ping(self, connection_id: str) -> None:
        if connection_id in self._last_ping:
            self._last_ping[connection_id] = time.monotonic()

    def record_disconnect(self, connection_id: str) -> None:
        self._last_ping.pop(connection_id, None)

    def stale_connections(self, now: float | None = None) -> list[str]:
        """Connection ids whose last ping is older than the timeout.

        Returned ids stop being tracked, so each is reported once.
        """
        now = time.monotonic() if now is None else now
        stale = [cid for cid, last in self._last_ping.items() if now - last > self._timeout_seconds]
        for cid in stale:
            del self._last_ping[cid]
        return stale

    def start(self, on_stale: Callable[[str], Awaitable[None]]) -> None:
        if self._task is None and self._timeout_seconds > 0:
            self._task = asyncio.create_task(self._check_loop(on_stale))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _check_loop(self, on_stale: Callable[[str], Awaitable[None]]) -> None:  # pragma: no cover
        while True:
            await asyncio.sleep(self._check_interval_seconds)
            for connection_id in self.stale_connections():
                logger.info("heartbeat timeout", connection_id=connection_id)
                try:
                    await on_stale(connection_id)
                except Exception:
                    logger.exception("error closing stale connection", connection_id=connection_id)
