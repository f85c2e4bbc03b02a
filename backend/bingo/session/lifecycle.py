"""Connection-to-seat bindings and reconnect grace holds."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()


@dataclass(frozen=True)
class Binding:
    """Association of a live connection with a seat in a room.

    ``token`` is the signed ticket the connection presented; a reconnect
    presenting the same ticket can reclaim the seat while it is held.
    """

    connection_id: str
    room_id: str
    player_id: str
    token: str


@dataclass
class _SeatHold:
    binding: Binding
    task: asyncio.Task[None]


class ConnectionLifecycle:
    """Track which connection occupies which seat.

    A binding is removed exactly once: ``unbind`` pops it, so whichever of
    explicit leave, disconnect or expiry gets there first owns the cleanup
    and the others see nothing to do.
    """

    def __init__(self, grace_seconds: float = 0) -> None:
        self._grace_seconds = grace_seconds
        self._bindings: dict[str, Binding] = {}  # connection_id -> Binding
        self._holds: dict[str, _SeatHold] = {}  # token -> held seat

    @property
    def grace_seconds(self) -> float:
        return self._grace_seconds

    @property
    def hold_count(self) -> int:
        return len(self._holds)

    def bind(self, connection_id: str, room_id: str, player_id: str, token: str) -> Binding:
        binding = Binding(connection_id=connection_id, room_id=room_id, player_id=player_id, token=token)
        self._bindings[connection_id] = binding
        return binding

    def binding_for(self, connection_id: str) -> Binding | None:
        return self._bindings.get(connection_id)

    def unbind(self, connection_id: str) -> Binding | None:
        return self._bindings.pop(connection_id, None)

    def is_token_active(self, token: str) -> bool:
        """True if the ticket is bound to a live connection or holds a seat."""
        if token in self._holds:
            return True
        return any(b.token == token for b in self._bindings.values())

    def hold(self, binding: Binding, on_expire: Callable[[Binding], None]) -> None:
        """Reserve ``binding``'s seat and call ``on_expire`` once the grace window elapses."""
        self.release(binding.token)
        task = asyncio.create_task(self._expire_after(binding, on_expire))
        self._holds[binding.token] = _SeatHold(binding=binding, task=task)
        logger.info(
            "seat held for reconnect",
            room_id=binding.room_id,
            player_id=binding.player_id,
            grace_seconds=self._grace_seconds,
        )

    def claim_hold(self, token: str, room_id: str) -> Binding | None:
        """Take back a held seat for ``room_id``. Return the old binding, or None."""
        held = self._holds.get(token)
        if held is None or held.binding.room_id != room_id:
            return None
        del self._holds[token]
        held.task.cancel()
        return held.binding

    def release(self, token: str) -> None:
        held = self._holds.pop(token, None)
        if held is not None:
            held.task.cancel()

    def forget_room(self, room_id: str) -> None:
        """Drop every held seat of a room that no longer exists."""
        for token in [t for t, h in self._holds.items() if h.binding.room_id == room_id]:
            self.release(token)

    def cancel_all(self) -> None:
        for token in list(self._holds):
            self.release(token)

    async def _expire_after(self, binding: Binding, on_expire: Callable[[Binding], None]) -> None:
        await asyncio.sleep(self._grace_seconds)
        held = self._holds.get(binding.token)
        if held is None or held.binding != binding:
            return
        del self._holds[binding.token]
        logger.info("reconnect window elapsed", room_id=binding.room_id, player_id=binding.player_id)
        try:
            on_expire(binding)
        except Exception:
            logger.exception("error releasing held seat", room_id=binding.room_id)
