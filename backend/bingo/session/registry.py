"""Room store: the process-owned registry of live rooms."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING

import structlog

from bingo.logic.enums import IdleRoomPolicy

if TYPE_CHECKING:
    from collections.abc import Callable

    from bingo.logic.models import Room

logger = structlog.get_logger()

_REAPER_INTERVAL_SECONDS = 30


class RoomRegistry:
    """Hold every live Room keyed by id.

    Purely state: no connection I/O. ``max_rooms`` caps how many rooms may
    exist at once (one by default). Rooms that become empty are either
    disposed right away or parked until ``idle_room_ttl_seconds`` elapses,
    depending on ``idle_policy``; parked rooms are removed by a background
    reaper.
    """

    def __init__(
        self,
        *,
        max_rooms: int = 1,
        idle_policy: IdleRoomPolicy = IdleRoomPolicy.PARK,
        idle_room_ttl_seconds: float = 600,
        on_room_expired: Callable[[str], None] | None = None,
    ) -> None:
        self._rooms: dict[str, Room] = {}
        self._parked_at: dict[str, float] = {}  # room_id -> time.monotonic()
        self._max_rooms = max_rooms
        self._idle_policy = idle_policy
        self._idle_room_ttl_seconds = idle_room_ttl_seconds
        self._on_room_expired = on_room_expired
        self._reaper_task: asyncio.Task[None] | None = None

    @property
    def idle_policy(self) -> IdleRoomPolicy:
        return self._idle_policy

    @property
    def max_rooms(self) -> int:
        return self._max_rooms

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def has_capacity(self) -> bool:
        return self.room_count < self._max_rooms

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def sole_room_id(self) -> str | None:
        """Return the only room's id when exactly one room exists."""
        if len(self._rooms) == 1:
            return next(iter(self._rooms))
        return None

    def idle_room_id(self) -> str | None:
        """Return a parked room that a new host could take over, if any."""
        return next(iter(self._parked_at), None)

    def add(self, room: Room) -> None:
        if room.room_id in self._rooms:
            raise ValueError(f"room {room.room_id} already exists")
        if not self.has_capacity:
            raise ValueError(f"room limit of {self._max_rooms} reached")
        self._rooms[room.room_id] = room
        logger.info("room created", room_id=room.room_id)

    def commit(self, room: Room) -> None:
        """Replace the stored room with a fully-applied working copy."""
        if room.room_id not in self._rooms:
            raise KeyError(room.room_id)
        self._rooms[room.room_id] = room
        if not room.is_empty:
            self._parked_at.pop(room.room_id, None)

    def remove(self, room_id: str) -> Room | None:
        self._parked_at.pop(room_id, None)
        room = self._rooms.pop(room_id, None)
        if room is not None:
            logger.info("room disposed", room_id=room_id)
        return room

    def park(self, room_id: str) -> None:
        if room_id in self._rooms:
            self._parked_at[room_id] = time.monotonic()
            logger.info("room parked", room_id=room_id, ttl_seconds=self._idle_room_ttl_seconds)

    def is_parked(self, room_id: str) -> bool:
        return room_id in self._parked_at

    def start_reaper(self) -> None:
        if self._reaper_task is None:
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def stop_reaper(self) -> None:
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper_task
            self._reaper_task = None

    async def _reaper_loop(self) -> None:  # pragma: no cover
        while True:
            await asyncio.sleep(_REAPER_INTERVAL_SECONDS)
            self.reap_expired_rooms()

    def reap_expired_rooms(self, now: float | None = None) -> list[str]:
        """Remove parked rooms that stayed empty past the TTL. Return their ids."""
        now = time.monotonic() if now is None else now
        expired = [
            room_id
            for room_id, parked_at in self._parked_at.items()
            if now - parked_at > self._idle_room_ttl_seconds and self._rooms[room_id].is_empty
        ]
        for room_id in expired:
            self.remove(room_id)
            logger.info("parked room expired", room_id=room_id)
            if self._on_room_expired is not None:
                try:
                    self._on_room_expired(room_id)
                except Exception:
                    logger.exception("error in on_room_expired callback", room_id=room_id)
        return expired
