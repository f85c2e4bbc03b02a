from enum import StrEnum


class RoomStatus(StrEnum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


class NumberCategory(StrEnum):
    """Column letters of a 75-ball card."""

    B = "B"
    I = "I"  # noqa: E741
    N = "N"
    G = "G"
    O = "O"  # noqa: E741


class IdleRoomPolicy(StrEnum):
    """What happens to a room when its last player leaves."""

    DISPOSE = "dispose"
    PARK = "park"


class WinCheckMode(StrEnum):
    TRUST = "trust"
    CALLED_CELLS = "called_cells"
