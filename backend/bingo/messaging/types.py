from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from bingo.logic.enums import NumberCategory
from bingo.logic.events import RoomEvent
from bingo.logic.models import CalledNumber

# ASCII control character boundaries for input validation
_SPACE_ORD = 0x20
_DEL_ORD = 0x7F

ROOM_ID_PATTERN = r"^[a-zA-Z0-9_-]+$"
MAX_ROOM_ID_LENGTH = 50
MAX_DISPLAY_NAME_LENGTH = 50
# 5x5 card
MAX_MARKED_CELLS = 25


def _reject_control_chars(v: str) -> str:
    if any(ord(c) < _SPACE_ORD or ord(c) == _DEL_ORD for c in v):
        raise ValueError("must not contain control characters")
    return v


class ClientMessageType(StrEnum):
    JOIN = "join"
    START = "start"
    CALL_NUMBER = "call_number"
    CLAIM_WIN = "claim_win"
    RESET = "reset"
    LEAVE = "leave"
    PING = "ping"


class SessionMessageType(StrEnum):
    ACK = "ack"
    ERROR = "error"
    PONG = "pong"


class SessionErrorCode(StrEnum):
    """Transport-level error codes. Room rule violations use RoomErrorCode."""

    INVALID_MESSAGE = "invalid_message"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"


RoomIdField = Annotated[str, Field(min_length=1, max_length=MAX_ROOM_ID_LENGTH, pattern=ROOM_ID_PATTERN)]


class JoinPlayer(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=MAX_DISPLAY_NAME_LENGTH)
    is_host: bool = False

    @field_validator("display_name")
    @classmethod
    def _validate_display_name(cls, v: str | None) -> str | None:
        return v if v is None else _reject_control_chars(v)


class JoinMessage(BaseModel):
    type: Literal[ClientMessageType.JOIN] = ClientMessageType.JOIN
    room_id: RoomIdField
    player: JoinPlayer = Field(default_factory=JoinPlayer)


class StartMessage(BaseModel):
    type: Literal[ClientMessageType.START] = ClientMessageType.START
    room_id: RoomIdField


class NumberSpec(BaseModel):
    value: int = Field(ge=1, le=999)
    category: NumberCategory

    def to_called_number(self) -> CalledNumber:
        return CalledNumber(value=self.value, category=self.category)


class CallNumberMessage(BaseModel):
    type: Literal[ClientMessageType.CALL_NUMBER] = ClientMessageType.CALL_NUMBER
    room_id: RoomIdField
    number: NumberSpec | None = None


class ClaimWinMessage(BaseModel):
    type: Literal[ClientMessageType.CLAIM_WIN] = ClientMessageType.CLAIM_WIN
    room_id: RoomIdField
    pattern: str = Field(min_length=1, max_length=50)
    marked_cells: list[Annotated[int, Field(ge=0, le=999)]] = Field(default_factory=list, max_length=MAX_MARKED_CELLS)

    @field_validator("pattern")
    @classmethod
    def _validate_pattern(cls, v: str) -> str:
        return _reject_control_chars(v)


class ResetMessage(BaseModel):
    type: Literal[ClientMessageType.RESET] = ClientMessageType.RESET
    room_id: RoomIdField


class LeaveMessage(BaseModel):
    type: Literal[ClientMessageType.LEAVE] = ClientMessageType.LEAVE
    room_id: RoomIdField


class PingMessage(BaseModel):
    type: Literal[ClientMessageType.PING] = ClientMessageType.PING


ClientMessage = (
    JoinMessage | StartMessage | CallNumberMessage | ClaimWinMessage | ResetMessage | LeaveMessage | PingMessage
)

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(
    Annotated[ClientMessage, Field(discriminator="type")],
)


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    """Validate a decoded frame into a typed client message."""
    return _client_message_adapter.validate_python(data)


class AckMessage(BaseModel):
    """Direct acknowledgment to the connection that issued ``event``."""

    model_config = {"extra": "allow"}

    type: Literal[SessionMessageType.ACK] = SessionMessageType.ACK
    event: ClientMessageType


class ErrorMessage(BaseModel):
    type: Literal[SessionMessageType.ERROR] = SessionMessageType.ERROR
    event: ClientMessageType | None = None
    code: str
    message: str


class PongMessage(BaseModel):
    type: Literal[SessionMessageType.PONG] = SessionMessageType.PONG


def room_event_message(event: RoomEvent) -> dict[str, Any]:
    """Wire shape of a broadcast: ``{"type": <event type>, **payload}``."""
    return {"type": event.type.value, **event.payload}
