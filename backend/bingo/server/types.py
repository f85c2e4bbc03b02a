from pydantic import BaseModel, ConfigDict, Field, field_validator

from bingo.messaging.types import MAX_DISPLAY_NAME_LENGTH, MAX_ROOM_ID_LENGTH, ROOM_ID_PATTERN


class RegisterPlayerRequest(BaseModel):
    """Body of ``POST /players``."""

    model_config = ConfigDict(extra="forbid")

    player_name: str = Field(min_length=1, max_length=MAX_DISPLAY_NAME_LENGTH)
    is_host: bool = Field(default=False, strict=True)
    room_id: str | None = Field(default=None, min_length=1, max_length=MAX_ROOM_ID_LENGTH, pattern=ROOM_ID_PATTERN)

    @field_validator("player_name")
    @classmethod
    def _strip_player_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("player_name must not be blank")
        if any(not c.isprintable() for c in v):
            raise ValueError("player_name must not contain control characters")
        return v
