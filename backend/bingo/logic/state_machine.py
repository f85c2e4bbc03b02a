"""Room state machine: join, start, call-number, claim-win, reset and leave.

Each operation validates the event against the room, mutates the room in
place and returns a Transition describing the acknowledgment and the
broadcasts it produced. Operations raise RoomError subclasses before
touching anything they would otherwise change; callers that need
all-or-nothing semantics run them against a copy (see SessionManager).
"""

import random

import structlog

from bingo.logic.enums import RoomStatus
from bingo.logic.events import RoomEvent, RoomEventType, Transition
from bingo.logic.exceptions import (
    AuthorizationDeniedError,
    DuplicateClaimError,
    DuplicateNumberError,
    InvalidStateError,
    PoolExhaustedError,
    ValidationFailedError,
)
from bingo.logic.models import CalledNumber, Player, Room, WinClaim
from bingo.logic.pool import NumberPool
from bingo.logic.win_check import TrustingWinPredicate, WinPredicate

logger = structlog.get_logger()

DEFAULT_WINNER_CAP = 1

# Permitted status edges. waiting -> waiting is the idempotent reset.
_STATUS_EDGES: frozenset[tuple[RoomStatus, RoomStatus]] = frozenset(
    {
        (RoomStatus.WAITING, RoomStatus.PLAYING),
        (RoomStatus.PLAYING, RoomStatus.FINISHED),
        (RoomStatus.PLAYING, RoomStatus.WAITING),
        (RoomStatus.FINISHED, RoomStatus.WAITING),
        (RoomStatus.WAITING, RoomStatus.WAITING),
    },
)


def _set_status(room: Room, status: RoomStatus) -> None:
    if (room.status, status) not in _STATUS_EDGES:
        raise InvalidStateError(f"room cannot go from {room.status} to {status}")
    room.status = status


def _room_update(room: Room) -> RoomEvent:
    return RoomEvent(RoomEventType.ROOM_UPDATE, {"room": room.snapshot().model_dump(mode="json")})


class RoomStateMachine:
    def __init__(
        self,
        pool: NumberPool,
        *,
        win_predicate: WinPredicate | None = None,
        winner_cap: int = DEFAULT_WINNER_CAP,
        rng: random.Random | None = None,
    ) -> None:
        if winner_cap < 1:
            raise ValueError(f"winner_cap must be at least 1, got {winner_cap}")
        self._pool = pool
        self._win_predicate = win_predicate or TrustingWinPredicate()
        self._winner_cap = winner_cap
        self._rng = rng or random.Random()  # noqa: S311

    @property
    def pool(self) -> NumberPool:
        return self._pool

    @property
    def winner_cap(self) -> int:
        return self._winner_cap

    def create_room(self, room_id: str) -> Room:
        return Room(room_id=room_id)

    def join(self, room: Room, player_id: str, display_name: str) -> Transition:
        """Seat a new player.

        The first player of an empty room becomes host; nobody else ever
        does through joining. Joining is only open while the room waits.
        """
        if room.status is RoomStatus.FINISHED:
            raise InvalidStateError("game has finished, wait for the host to reset the room")
        if room.status is RoomStatus.PLAYING:
            raise InvalidStateError("game is already in progress")
        if player_id in room.players:
            raise ValidationFailedError("player has already joined this room")
        if not display_name.strip():
            raise ValidationFailedError("display name must not be blank")

        player = Player(id=player_id, display_name=display_name, is_host=room.is_empty)
        room.players[player_id] = player
        logger.info("player joined", room_id=room.room_id, player_id=player_id, is_host=player.is_host)
        return Transition(
            result={
                "player": player.info().model_dump(mode="json"),
                "room": room.snapshot().model_dump(mode="json"),
                "is_host": player.is_host,
            },
            events=[_room_update(room)],
        )

    def start(self, room: Room, player_id: str) -> Transition:
        self._require_host(room, player_id)
        if room.status is not RoomStatus.WAITING:
            raise InvalidStateError(f"cannot start a game that is {room.status}")
        _set_status(room, RoomStatus.PLAYING)
        logger.info("game started", room_id=room.room_id)
        snapshot = room.snapshot().model_dump(mode="json")
        return Transition(
            events=[
                RoomEvent(RoomEventType.GAME_STARTED, {"room": snapshot}),
                _room_update(room),
            ],
        )

    def call_number(self, room: Room, player_id: str, number: CalledNumber | None = None) -> Transition:
        """Append a number to the call history.

        With ``number`` omitted a random uncalled pool entry is drawn.
        Reaching the pool size finishes the game.
        """
        self._require_host(room, player_id)
        if room.status is not RoomStatus.PLAYING:
            raise InvalidStateError("numbers can only be called while the game is in progress")

        called = room.called_values
        if number is None:
            remaining = self._pool.remaining(called)
            if not remaining:
                raise PoolExhaustedError("every number in the pool has been called")
            number = self._rng.choice(remaining)
        elif not self._pool.contains(number):
            raise ValidationFailedError(f"{number.category}{number.value} is not in the number pool")
        elif number.value in called:
            raise DuplicateNumberError(number.value)

        room.called_numbers.append(number)
        room.current_number = number
        events = [RoomEvent(RoomEventType.NUMBER_CALLED, {"number": number.model_dump(mode="json")})]

        exhausted = len(room.called_numbers) >= self._pool.size
        if exhausted:
            _set_status(room, RoomStatus.FINISHED)
        events.append(_room_update(room))
        if exhausted:
            logger.info("number pool exhausted, game finished", room_id=room.room_id)
            events.append(RoomEvent(RoomEventType.GAME_FINISHED))

        return Transition(result={"number": number.model_dump(mode="json")}, events=events)

    def claim_win(
        self,
        room: Room,
        player_id: str,
        pattern: str,
        marked_cells: list[int] | None = None,
    ) -> Transition:
        """Evaluate a win claim.

        An invalid claim changes nothing and broadcasts nothing; the caller
        learns the verdict from ``result["valid"]``.
        """
        if room.status is not RoomStatus.PLAYING:
            raise InvalidStateError("claims are only accepted while the game is in progress")
        player = room.players.get(player_id)
        if player is None:
            raise AuthorizationDeniedError("only room members can claim a win")
        if room.has_winner(player_id):
            raise DuplicateClaimError(player_id)

        valid = self._win_predicate(
            marked_cells=tuple(marked_cells or ()),
            called_numbers=tuple(room.called_numbers),
            pattern=pattern,
        )
        if not valid:
            logger.info("invalid win claim", room_id=room.room_id, player_id=player_id, pattern=pattern)
            return Transition(result={"valid": False})

        claim = WinClaim(player_id=player.id, player_display_name=player.display_name, pattern=pattern)
        room.winners.append(claim)
        events = [RoomEvent(RoomEventType.BINGO_CLAIMED, {"winner": claim.model_dump(mode="json")})]

        cap_reached = len(room.winners) >= self._winner_cap
        if cap_reached:
            _set_status(room, RoomStatus.FINISHED)
        events.append(_room_update(room))
        if cap_reached:
            logger.info("winner cap reached, game finished", room_id=room.room_id, winners=len(room.winners))
            events.append(RoomEvent(RoomEventType.GAME_FINISHED))

        return Transition(result={"valid": True, "winner": claim.model_dump(mode="json")}, events=events)

    def reset(self, room: Room, player_id: str) -> Transition:
        self._require_host(room, player_id)
        room.clear_history()
        _set_status(room, RoomStatus.WAITING)
        logger.info("room reset", room_id=room.room_id)
        return Transition(
            events=[
                RoomEvent(RoomEventType.BINGO_CLAIMED, {"winner": None}),
                _room_update(room),
            ],
        )

    def leave(self, room: Room, player_id: str) -> Transition:
        """Remove a player, promoting the earliest remaining joiner if the host left.

        Unknown player ids are ignored.
        """
        player = room.players.pop(player_id, None)
        if player is None:
            return Transition()

        promoted: str | None = None
        if player.is_host and room.players:
            successor = next(iter(room.players.values()))
            successor.is_host = True
            promoted = successor.id
            logger.info("host promoted", room_id=room.room_id, player_id=promoted)

        logger.info("player left", room_id=room.room_id, player_id=player_id, remaining=room.player_count)
        return Transition(result={"promoted": promoted}, events=[_room_update(room)])

    def set_connected(self, room: Room, player_id: str, *, connected: bool) -> Transition:
        player = room.players.get(player_id)
        if player is None or player.connected == connected:
            return Transition()
        player.connected = connected
        return Transition(
            result={
                "player": player.info().model_dump(mode="json"),
                "room": room.snapshot().model_dump(mode="json"),
                "is_host": player.is_host,
            },
            events=[_room_update(room)],
        )

    def park(self, room: Room) -> None:
        """Return an empty room to a fresh waiting state."""
        room.clear_history()
        _set_status(room, RoomStatus.WAITING)

    def _require_host(self, room: Room, player_id: str) -> Player:
        player = room.players.get(player_id)
        if player is None:
            raise AuthorizationDeniedError("only room members can do this")
        if not player.is_host:
            raise AuthorizationDeniedError("only the host can do this")
        return player
