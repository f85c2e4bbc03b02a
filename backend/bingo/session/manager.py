from __future__ import annotations

import copy
import secrets
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

from bingo.logic.enums import IdleRoomPolicy
from bingo.logic.events import RoomEvent, Transition
from bingo.logic.exceptions import (
    AuthenticationRequiredError,
    AuthorizationDeniedError,
    InvalidStateError,
    RoomError,
    RoomLimitReachedError,
    RoomNotFoundError,
    ValidationFailedError,
)
from bingo.messaging.types import (
    AckMessage,
    ClientMessageType,
    ErrorMessage,
    PongMessage,
    SessionErrorCode,
    room_event_message,
)
from bingo.session.dispatcher import BroadcastDispatcher
from bingo.session.heartbeat import HeartbeatMonitor
from bingo.session.lifecycle import Binding, ConnectionLifecycle
from bingo.session.registry import RoomRegistry

if TYPE_CHECKING:
    from bingo.logic.models import Room
    from bingo.logic.state_machine import RoomStateMachine
    from bingo.messaging.protocol import ConnectionProtocol
    from bingo.messaging.types import (
        CallNumberMessage,
        ClaimWinMessage,
        JoinMessage,
        LeaveMessage,
        ResetMessage,
        StartMessage,
    )
    from shared.auth.ticket import PlayerTicket

logger = structlog.get_logger()

HEARTBEAT_CLOSE_CODE = 4008

# (room_id, transition) produced by a room event handler
_Outcome = tuple[str, Transition]


class SessionManager:
    """Own the live rooms and every connection attached to them.

    Event handlers are synchronous: validation, mutation, commit and
    enqueueing of the ack and broadcasts happen without yielding to the
    event loop, so events are applied to a room one at a time and the
    broadcasts of one event never interleave with another's.
    """

    def __init__(
        self,
        machine: RoomStateMachine,
        *,
        max_rooms: int = 1,
        idle_policy: IdleRoomPolicy = IdleRoomPolicy.PARK,
        idle_room_ttl_seconds: float = 600,
        dispatcher: BroadcastDispatcher | None = None,
        reconnect_grace_seconds: float = 0,
        heartbeat_timeout_seconds: float = 0,
    ) -> None:
        self._machine = machine
        self._registry = RoomRegistry(
            max_rooms=max_rooms,
            idle_policy=idle_policy,
            idle_room_ttl_seconds=idle_room_ttl_seconds,
            on_room_expired=self._forget_room,
        )
        self._dispatcher = dispatcher or BroadcastDispatcher()
        self._lifecycle = ConnectionLifecycle(grace_seconds=reconnect_grace_seconds)
        self._heartbeat = HeartbeatMonitor(timeout_seconds=heartbeat_timeout_seconds)
        self._connections: dict[str, ConnectionProtocol] = {}
        self._identities: dict[str, tuple[PlayerTicket, str]] = {}  # connection_id -> (ticket, token)

    @property
    def registry(self) -> RoomRegistry:
        return self._registry

    @property
    def dispatcher(self) -> BroadcastDispatcher:
        return self._dispatcher

    @property
    def lifecycle(self) -> ConnectionLifecycle:
        return self._lifecycle

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_room(self, room_id: str) -> Room | None:
        return self._registry.get(room_id)

    async def start(self) -> None:
        self._registry.start_reaper()
        self._heartbeat.start(self.close_stale_connection)

    async def shutdown(self) -> None:
        self._lifecycle.cancel_all()
        await self._heartbeat.stop()
        await self._registry.stop_reaper()
        await self._dispatcher.close_all()

    def resolve_room_id(self, *, is_host: bool, requested_room_id: str | None = None) -> str:
        """Pick the room a newly registered player should join.

        Hosts get a fresh room id while the cap allows, otherwise the id of
        a parked idle room they can take over. Other players get the room
        they asked for, or the only live room unless it is parked.
        """
        if is_host:
            if self._registry.has_capacity:
                return f"room-{secrets.token_hex(4)}"
            idle_room_id = self._registry.idle_room_id()
            if idle_room_id is not None:
                return idle_room_id
            raise RoomLimitReachedError(f"room limit of {self._registry.max_rooms} reached")
        if requested_room_id is not None:
            return requested_room_id
        sole_room_id = self._registry.sole_room_id()
        if sole_room_id is None or self._registry.is_parked(sole_room_id):
            raise RoomNotFoundError(None)
        return sole_room_id

    def register_connection(self, connection: ConnectionProtocol, ticket: PlayerTicket, token: str) -> None:
        cid = connection.connection_id
        self._connections[cid] = connection
        self._identities[cid] = (ticket, token)
        self._dispatcher.register(connection)
        self._heartbeat.record_connect(cid)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        cid = connection.connection_id
        binding = self._lifecycle.unbind(cid)
        self._dispatcher.unsubscribe(cid)
        self._heartbeat.record_disconnect(cid)
        self._identities.pop(cid, None)
        self._connections.pop(cid, None)
        if binding is not None:
            self._release_seat(binding)
        await self._dispatcher.unregister(cid)

    async def close_stale_connection(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            await connection.close(code=HEARTBEAT_CLOSE_CODE, reason="heartbeat_timeout")

    def handle_ping(self, connection: ConnectionProtocol) -> None:
        self._heartbeat.record_ping(connection.connection_id)
        self._dispatcher.send_to(connection.connection_id, PongMessage().model_dump(mode="json"))

    def send_error(
        self,
        connection: ConnectionProtocol,
        code: str,
        message: str,
        event: ClientMessageType | None = None,
    ) -> None:
        logger.warning("error sent to client", error_code=code, error_message=message, client_event=event)
        self._dispatcher.send_to(
            connection.connection_id,
            ErrorMessage(event=event, code=code, message=message).model_dump(mode="json"),
        )

    # room events

    def join_room(self, connection: ConnectionProtocol, message: JoinMessage) -> None:
        self._handle_event(connection, ClientMessageType.JOIN, lambda: self._join(connection, message))

    def start_game(self, connection: ConnectionProtocol, message: StartMessage) -> None:
        self._handle_event(
            connection,
            ClientMessageType.START,
            lambda: self._apply_as_member(connection, message.room_id, self._machine.start),
        )

    def call_number(self, connection: ConnectionProtocol, message: CallNumberMessage) -> None:
        number = message.number.to_called_number() if message.number is not None else None
        self._handle_event(
            connection,
            ClientMessageType.CALL_NUMBER,
            lambda: self._apply_as_member(
                connection,
                message.room_id,
                lambda room, player_id: self._machine.call_number(room, player_id, number),
            ),
        )

    def claim_win(self, connection: ConnectionProtocol, message: ClaimWinMessage) -> None:
        self._handle_event(
            connection,
            ClientMessageType.CLAIM_WIN,
            lambda: self._apply_as_member(
                connection,
                message.room_id,
                lambda room, player_id: self._machine.claim_win(
                    room,
                    player_id,
                    message.pattern,
                    message.marked_cells,
                ),
            ),
        )

    def reset_room(self, connection: ConnectionProtocol, message: ResetMessage) -> None:
        self._handle_event(
            connection,
            ClientMessageType.RESET,
            lambda: self._apply_as_member(connection, message.room_id, self._machine.reset),
        )

    def leave_room(self, connection: ConnectionProtocol, message: LeaveMessage) -> None:
        self._handle_event(connection, ClientMessageType.LEAVE, lambda: self._leave(connection, message.room_id))

    def _handle_event(
        self,
        connection: ConnectionProtocol,
        event: ClientMessageType,
        handler: Callable[[], _Outcome],
    ) -> None:
        try:
            room_id, transition = handler()
        except RoomError as e:
            self.send_error(connection, e.code.value, str(e), event=event)
            return
        except Exception:
            logger.exception("unexpected error handling room event", client_event=event)
            self.send_error(connection, SessionErrorCode.INTERNAL_ERROR.value, "internal server error", event=event)
            return

        ack = AckMessage(event=event, **transition.result)
        self._dispatcher.send_to(connection.connection_id, ack.model_dump(mode="json"))
        self._publish(room_id, transition.events)

    def _publish(self, room_id: str, events: list[RoomEvent]) -> None:
        for event in events:
            self._dispatcher.broadcast(room_id, room_event_message(event))

    def _identity(self, connection: ConnectionProtocol) -> tuple[PlayerTicket, str]:
        identity = self._identities.get(connection.connection_id)
        if identity is None:
            raise AuthenticationRequiredError("connection has no verified ticket")
        return identity

    def _bound_player(self, connection: ConnectionProtocol, room_id: str) -> Binding:
        binding = self._lifecycle.binding_for(connection.connection_id)
        if binding is None or binding.room_id != room_id:
            raise AuthorizationDeniedError("not a member of this room")
        return binding

    def _commit(self, room_id: str, operation: Callable[[Room], Transition]) -> Transition:
        """Run ``operation`` on a copy of the room and store the copy only if it succeeds."""
        room = self._registry.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        working = copy.deepcopy(room)
        transition = operation(working)
        self._registry.commit(working)
        return transition

    def _apply_as_member(
        self,
        connection: ConnectionProtocol,
        room_id: str,
        operation: Callable[[Room, str], Transition],
    ) -> _Outcome:
        binding = self._bound_player(connection, room_id)
        return room_id, self._commit(room_id, lambda room: operation(room, binding.player_id))

    def _join(self, connection: ConnectionProtocol, message: JoinMessage) -> _Outcome:
        ticket, token = self._identity(connection)
        cid = connection.connection_id
        room_id = message.room_id

        if self._lifecycle.binding_for(cid) is not None:
            raise InvalidStateError("connection has already joined a room")

        rejoined = self._rejoin(cid, room_id, token)
        if rejoined is not None:
            return room_id, rejoined

        if self._lifecycle.is_token_active(token):
            raise InvalidStateError("ticket is already in use by another connection")
        requested_name = message.player.display_name
        if requested_name is not None and requested_name != ticket.display_name:
            raise ValidationFailedError("display name does not match the ticket")
        wants_host = message.player.is_host and ticket.is_host

        player_id = uuid4().hex
        stored = self._registry.get(room_id)
        # Only a host can open a room, a parked empty one included.
        if (stored is None or stored.is_empty) and not wants_host:
            raise RoomNotFoundError(room_id)
        if stored is None:
            if not self._registry.has_capacity:
                raise RoomLimitReachedError(f"room limit of {self._registry.max_rooms} reached")
            room = self._machine.create_room(room_id)
            transition = self._machine.join(room, player_id, ticket.display_name)
            self._registry.add(room)
        else:
            transition = self._commit(
                room_id,
                lambda room: self._machine.join(room, player_id, ticket.display_name),
            )

        self._lifecycle.bind(cid, room_id, player_id, token)
        self._dispatcher.subscribe(room_id, cid)
        transition.result["rejoined"] = False
        return room_id, transition

    def _rejoin(self, connection_id: str, room_id: str, token: str) -> Transition | None:
        """Rebind a seat held for ``token``, if any."""
        held = self._lifecycle.claim_hold(token, room_id)
        if held is None:
            return None
        room = self._registry.get(room_id)
        if room is None or held.player_id not in room.players:
            return None
        transition = self._commit(
            room_id,
            lambda r: self._machine.set_connected(r, held.player_id, connected=True),
        )
        self._lifecycle.bind(connection_id, room_id, held.player_id, token)
        self._dispatcher.subscribe(room_id, connection_id)
        transition.result["rejoined"] = True
        logger.info("player rejoined", room_id=room_id, player_id=held.player_id)
        return transition

    def _leave(self, connection: ConnectionProtocol, room_id: str) -> _Outcome:
        binding = self._lifecycle.binding_for(connection.connection_id)
        if binding is None:
            return room_id, Transition(result={"left": False})
        if binding.room_id != room_id:
            raise AuthorizationDeniedError("not a member of this room")
        self._lifecycle.unbind(connection.connection_id)
        self._dispatcher.unsubscribe(connection.connection_id)
        transition = self._remove_player(binding.room_id, binding.player_id)
        transition.result["left"] = True
        return room_id, transition

    def _release_seat(self, binding: Binding) -> None:
        """Hold a disconnected player's seat for the grace window, or remove them now."""
        try:
            if self._lifecycle.grace_seconds > 0:
                room = self._registry.get(binding.room_id)
                if room is not None and binding.player_id in room.players:
                    transition = self._commit(
                        binding.room_id,
                        lambda r: self._machine.set_connected(r, binding.player_id, connected=False),
                    )
                    self._lifecycle.hold(binding, on_expire=self._expire_hold)
                    self._publish(binding.room_id, transition.events)
                    return
            transition = self._remove_player(binding.room_id, binding.player_id)
            self._publish(binding.room_id, transition.events)
        except Exception:
            logger.exception("error releasing seat", room_id=binding.room_id, player_id=binding.player_id)

    def _expire_hold(self, binding: Binding) -> None:
        transition = self._remove_player(binding.room_id, binding.player_id)
        self._publish(binding.room_id, transition.events)

    def _remove_player(self, room_id: str, player_id: str) -> Transition:
        """Take a player out of a room and apply the idle-room policy if it empties."""
        room = self._registry.get(room_id)
        if room is None:
            return Transition()
        working = copy.deepcopy(room)
        transition = self._machine.leave(working, player_id)
        if not working.is_empty:
            self._registry.commit(working)
            return transition

        if self._registry.idle_policy is IdleRoomPolicy.DISPOSE:
            self._registry.remove(room_id)
            self._forget_room(room_id)
            return Transition(result=transition.result)

        self._machine.park(working)
        self._registry.commit(working)
        self._registry.park(room_id)
        return transition

    def _forget_room(self, room_id: str) -> None:
        self._dispatcher.forget_room(room_id)
        self._lifecycle.forget_room(room_id)

    def room_summary(self) -> dict[str, Any]:
        return {
            "rooms": self._registry.room_count,
            "max_rooms": self._registry.max_rooms,
            "connections": self.connection_count,
        }
