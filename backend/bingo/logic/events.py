"""Outcomes produced by state-machine transitions.

A Transition carries the result returned to the issuing connection and the
ordered list of RoomEvents to fan out to every room member.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class RoomEventType(StrEnum):
    ROOM_UPDATE = "room_update"
    GAME_STARTED = "game_started"
    NUMBER_CALLED = "number_called"
    GAME_FINISHED = "game_finished"
    BINGO_CLAIMED = "bingo_claimed"


@dataclass(frozen=True)
class RoomEvent:
    type: RoomEventType
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class Transition:
    result: dict[str, Any] = field(default_factory=dict)
    events: list[RoomEvent] = field(default_factory=list)
