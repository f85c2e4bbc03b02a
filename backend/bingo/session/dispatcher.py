"""Fan-out of room notifications to subscribed connections."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

import structlog

from bingo.messaging.encoder import encode

if TYPE_CHECKING:
    from bingo.messaging.protocol import ConnectionProtocol

logger = structlog.get_logger()

DEFAULT_MAX_PENDING = 256

# Close code for connections dropped because they could not keep up.
SLOW_CONSUMER_CLOSE_CODE = 1013


class _Outbox:
    """Outbound queue and writer task for a single connection."""

    __slots__ = ("connection", "dropped", "queue", "writer")

    def __init__(self, connection: ConnectionProtocol, max_pending: int) -> None:
        self.connection = connection
        self.queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max_pending)
        self.writer: asyncio.Task[None] | None = None
        self.dropped = False


class BroadcastDispatcher:
    """Deliver messages to connections through per-connection queues.

    Enqueueing never suspends, so messages issued for a room in one
    synchronous step reach every subscriber in issue order. Each connection
    has its own writer task; a subscriber whose send fails or whose queue
    fills up is dropped and closed without holding up anyone else.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._max_pending = max_pending
        self._outboxes: dict[str, _Outbox] = {}  # connection_id -> outbox
        self._groups: dict[str, dict[str, None]] = {}  # room_id -> ordered set of connection ids
        self._connection_rooms: dict[str, str] = {}  # connection_id -> room_id
        self._closing: set[asyncio.Task[None]] = set()

    def register(self, connection: ConnectionProtocol) -> None:
        outbox = _Outbox(connection, self._max_pending)
        outbox.writer = asyncio.create_task(self._write_loop(outbox))
        self._outboxes[connection.connection_id] = outbox

    async def unregister(self, connection_id: str) -> None:
        """Forget a connection, discarding whatever was still queued for it."""
        self.unsubscribe(connection_id)
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is None or outbox.writer is None:
            return
        self._discard_pending(outbox)
        outbox.writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await outbox.writer

    def subscribe(self, room_id: str, connection_id: str) -> None:
        self.unsubscribe(connection_id)
        self._groups.setdefault(room_id, {})[connection_id] = None
        self._connection_rooms[connection_id] = room_id

    def unsubscribe(self, connection_id: str) -> str | None:
        room_id = self._connection_rooms.pop(connection_id, None)
        if room_id is not None:
            group = self._groups.get(room_id, {})
            group.pop(connection_id, None)
            if not group:
                self._groups.pop(room_id, None)
        return room_id

    def subscribers(self, room_id: str) -> list[str]:
        return list(self._groups.get(room_id, {}))

    def forget_room(self, room_id: str) -> None:
        for connection_id in self._groups.pop(room_id, {}):
            self._connection_rooms.pop(connection_id, None)

    def broadcast(self, room_id: str, message: dict[str, Any]) -> None:
        """Queue ``message`` for every connection subscribed to ``room_id``."""
        data = encode(message)
        for connection_id in self.subscribers(room_id):
            self._enqueue(connection_id, data)

    def send_to(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Queue ``message`` for one connection. Return False if it cannot be delivered."""
        return self._enqueue(connection_id, encode(message))

    async def flush(self) -> None:
        """Wait until every queued message has been written or discarded."""
        await asyncio.gather(*(outbox.queue.join() for outbox in list(self._outboxes.values())))

    async def flush_connection(self, connection_id: str) -> None:
        outbox = self._outboxes.get(connection_id)
        if outbox is not None:
            await outbox.queue.join()

    async def close_all(self) -> None:
        for connection_id in list(self._outboxes):
            outbox = self._outboxes[connection_id]
            await self.unregister(connection_id)
            with contextlib.suppress(RuntimeError, OSError, ConnectionError):
                await outbox.connection.close(code=1001, reason="server_shutdown")

    def _enqueue(self, connection_id: str, data: bytes) -> bool:
        outbox = self._outboxes.get(connection_id)
        if outbox is None or outbox.dropped:
            return False
        try:
            outbox.queue.put_nowait(data)
        except asyncio.QueueFull:
            logger.warning("outbound queue full, dropping connection", connection_id=connection_id)
            self._drop(outbox)
            return False
        return True

    async def _write_loop(self, outbox: _Outbox) -> None:
        while True:
            data = await outbox.queue.get()
            try:
                await outbox.connection.send_bytes(data)
            except (RuntimeError, OSError, ConnectionError) as e:
                logger.info(
                    "delivery failed, dropping connection",
                    connection_id=outbox.connection.connection_id,
                    error=str(e),
                )
                self._drop(outbox)
            finally:
                outbox.queue.task_done()
            if outbox.dropped:
                return

    def _drop(self, outbox: _Outbox) -> None:
        if outbox.dropped:
            return
        outbox.dropped = True
        self.unsubscribe(outbox.connection.connection_id)
        self._discard_pending(outbox)
        task = asyncio.create_task(self._close_quietly(outbox.connection))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    @staticmethod
    def _discard_pending(outbox: _Outbox) -> None:
        while True:
            try:
                outbox.queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            outbox.queue.task_done()

    @staticmethod
    async def _close_quietly(connection: ConnectionProtocol) -> None:
        with contextlib.suppress(RuntimeError, OSError, ConnectionError):
            await connection.close(code=SLOW_CONSUMER_CLOSE_CODE, reason="delivery_failed")
