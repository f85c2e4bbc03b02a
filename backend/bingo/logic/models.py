"""Room state: the authoritative in-memory representation of a bingo room."""

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from bingo.logic.enums import NumberCategory, RoomStatus


class CalledNumber(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int
    category: NumberCategory


class WinClaim(BaseModel):
    model_config = ConfigDict(frozen=True)

    player_id: str
    player_display_name: str
    pattern: str


class PlayerInfo(BaseModel):
    """Player entry as sent to clients."""

    id: str
    display_name: str
    is_host: bool
    connected: bool


class RoomSnapshot(BaseModel):
    """Full room state sent with every ``room_update``."""

    id: str
    status: RoomStatus
    players: list[PlayerInfo]
    called_numbers: list[CalledNumber]
    current_number: CalledNumber | None
    winners: list[WinClaim]


@dataclass
class Player:
    """A seat in a room.

    ``id`` is minted by the server at join time and bound to the joining
    connection. ``connected`` is False while the seat is held for a
    reconnecting client.
    """

    id: str
    display_name: str
    is_host: bool = False
    connected: bool = True

    def info(self) -> PlayerInfo:
        return PlayerInfo(
            id=self.id,
            display_name=self.display_name,
            is_host=self.is_host,
            connected=self.connected,
        )


@dataclass
class Room:
    """A single live game session.

    ``players`` is keyed by player id and keeps join order, which decides
    host promotion.
    """

    room_id: str
    status: RoomStatus = RoomStatus.WAITING
    players: dict[str, Player] = field(default_factory=dict)
    called_numbers: list[CalledNumber] = field(default_factory=list)
    current_number: CalledNumber | None = None
    winners: list[WinClaim] = field(default_factory=list)

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def is_empty(self) -> bool:
        return self.player_count == 0

    @property
    def host(self) -> Player | None:
        return next((p for p in self.players.values() if p.is_host), None)

    @property
    def called_values(self) -> set[int]:
        return {n.value for n in self.called_numbers}

    def has_winner(self, player_id: str) -> bool:
        return any(w.player_id == player_id for w in self.winners)

    def clear_history(self) -> None:
        self.called_numbers.clear()
        self.current_number = None
        self.winners.clear()

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            id=self.room_id,
            status=self.status,
            players=[p.info() for p in self.players.values()],
            called_numbers=list(self.called_numbers),
            current_number=self.current_number,
            winners=list(self.winners),
        )
