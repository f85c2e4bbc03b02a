from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from bingo.logic.exceptions import RoomErrorCode
from bingo.messaging.encoder import DecodeError, decode
from bingo.messaging.protocol import ConnectionProtocol
from bingo.messaging.types import SessionErrorCode
from bingo.server.rate_limit import TokenBucket
from shared.auth.ticket import verify_ticket

if TYPE_CHECKING:
    from bingo.messaging.router import MessageRouter
    from bingo.server.settings import BingoServerSettings

logger = structlog.get_logger()

AUTH_CLOSE_CODE = 4001
FORBIDDEN_ORIGIN_CLOSE_CODE = 4003
DECODE_ERRORS_CLOSE_CODE = 4004

# Disconnect after this many consecutive decode errors
_MAX_DECODE_ERRORS = 5


class WebSocketConnection(ConnectionProtocol):
    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or str(uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self._websocket.send_bytes(data)
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_bytes(self) -> bytes:
        try:
            return await self._websocket.receive_bytes()
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def close(self, code: int = 1000, reason: str = "") -> None:
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


async def _reject(websocket: WebSocket, code: int, reason: str) -> None:
    """Accept then close, so browsers see the close code instead of a bare HTTP 403."""
    logger.info("websocket rejected", close_code=code, reason=reason)
    await websocket.accept()
    await websocket.close(code=code, reason=reason)


async def websocket_endpoint(websocket: WebSocket, router: MessageRouter, settings: BingoServerSettings) -> None:
    if settings.ws_allowed_origin and websocket.headers.get("origin") != settings.ws_allowed_origin:
        await _reject(websocket, FORBIDDEN_ORIGIN_CLOSE_CODE, "forbidden_origin")
        return

    token = websocket.query_params.get("ticket")
    if not token:
        await _reject(websocket, AUTH_CLOSE_CODE, RoomErrorCode.AUTHENTICATION_REQUIRED.value)
        return
    ticket = verify_ticket(token, settings.ticket_secret, max_ttl_seconds=settings.ticket_ttl_seconds)
    if ticket is None:
        await _reject(websocket, AUTH_CLOSE_CODE, RoomErrorCode.AUTHENTICATION_INVALID.value)
        return

    await websocket.accept()

    connection = WebSocketConnection(websocket)
    structlog.contextvars.bind_contextvars(connection_id=connection.connection_id)
    logger.info("websocket connected", display_name=ticket.display_name)
    await router.handle_connect(connection, ticket, token)

    bucket = TokenBucket(rate=settings.rate_limit_per_second, burst=settings.rate_limit_burst)
    decode_errors = 0

    try:
        while True:
            raw = await connection.receive_bytes()

            # Decode even when rate-limited so the malformed-frame strike
            # counter stays accurate.
            try:
                data = decode(raw)
            except DecodeError as e:
                decode_errors += 1
                logger.warning("decode error", error=str(e), strikes=decode_errors)
                router.send_error(connection, SessionErrorCode.INVALID_MESSAGE, str(e))
                if decode_errors >= _MAX_DECODE_ERRORS:
                    logger.info("too many decode errors, disconnecting")
                    await router.flush(connection)
                    await connection.close(code=DECODE_ERRORS_CLOSE_CODE, reason="too_many_decode_errors")
                    return
                continue

            decode_errors = 0

            if not bucket.consume():
                router.send_error(connection, SessionErrorCode.RATE_LIMITED, "too many messages")
                continue
            await router.handle_message(connection, data)
    except (WebSocketDisconnect, RuntimeError, ConnectionError):
        pass
    finally:
        logger.info("websocket disconnected")
        await router.handle_disconnect(connection)
        structlog.contextvars.clear_contextvars()
