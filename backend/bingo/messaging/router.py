from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from bingo.logic.exceptions import RoomErrorCode
from bingo.messaging.types import (
    CallNumberMessage,
    ClaimWinMessage,
    ClientMessageType,
    JoinMessage,
    LeaveMessage,
    PingMessage,
    ResetMessage,
    SessionErrorCode,
    StartMessage,
    parse_client_message,
)

if TYPE_CHECKING:
    from bingo.messaging.protocol import ConnectionProtocol
    from bingo.session.manager import SessionManager
    from shared.auth.ticket import PlayerTicket

logger = logging.getLogger(__name__)

_KNOWN_TYPES = frozenset(ClientMessageType)


class MessageRouter:
    """
    Routes incoming messages to appropriate handlers.

    This class contains pure business logic and can be tested
    without real WebSocket connections.
    """

    def __init__(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager

    async def handle_connect(self, connection: ConnectionProtocol, ticket: PlayerTicket, token: str) -> None:
        self._session_manager.register_connection(connection, ticket, token)

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        raw_message: dict[str, Any],
    ) -> None:
        try:
            message = parse_client_message(raw_message)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            self._reject(connection, raw_message.get("type"), e)
            return

        manager = self._session_manager
        if isinstance(message, JoinMessage):
            manager.join_room(connection, message)
        elif isinstance(message, StartMessage):
            manager.start_game(connection, message)
        elif isinstance(message, CallNumberMessage):
            manager.call_number(connection, message)
        elif isinstance(message, ClaimWinMessage):
            manager.claim_win(connection, message)
        elif isinstance(message, ResetMessage):
            manager.reset_room(connection, message)
        elif isinstance(message, LeaveMessage):
            manager.leave_room(connection, message)
        elif isinstance(message, PingMessage):
            manager.handle_ping(connection)

    def _reject(self, connection: ConnectionProtocol, message_type: object, error: Exception) -> None:
        """Known message type with bad fields is validation_failed; anything else is invalid_message."""
        if isinstance(message_type, str) and message_type in _KNOWN_TYPES:
            logger.warning("rejected %s from %s: %s", message_type, connection.connection_id, error)
            self._session_manager.send_error(
                connection,
                RoomErrorCode.VALIDATION_FAILED.value,
                str(error),
                event=ClientMessageType(message_type),
            )
            return
        logger.warning("invalid message from %s: %s", connection.connection_id, error)
        self._session_manager.send_error(connection, SessionErrorCode.INVALID_MESSAGE.value, str(error))

    def send_error(self, connection: ConnectionProtocol, code: SessionErrorCode, message: str) -> None:
        self._session_manager.send_error(connection, code.value, message)

    async def flush(self, connection: ConnectionProtocol) -> None:
        """Wait until everything queued for ``connection`` has been written."""
        await self._session_manager.dispatcher.flush_connection(connection.connection_id)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        await self._session_manager.handle_disconnect(connection)
