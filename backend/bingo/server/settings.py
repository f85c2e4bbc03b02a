"""Bingo server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from bingo.logic.enums import IdleRoomPolicy, WinCheckMode
from shared.auth.ticket import DEFAULT_TICKET_TTL_SECONDS
from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class BingoServerSettings(BaseSettings):
    model_config = {"env_prefix": "BINGO_"}

    log_dir: str = Field(default="backend/logs/bingo", min_length=1)
    cors_origins: list[str] = ["http://localhost:5173"]
    # Empty means any Origin header (or none) is accepted on the WebSocket.
    ws_allowed_origin: str = ""

    # JSON array of {value, category}; unset means the standard 75-ball pool.
    number_pool_path: str | None = None
    max_rooms: int = Field(default=1, ge=1)
    winner_cap: int = Field(default=1, ge=1)
    win_check: WinCheckMode = WinCheckMode.TRUST
    idle_room_policy: IdleRoomPolicy = IdleRoomPolicy.PARK
    idle_room_ttl_seconds: int = Field(default=600, ge=1)
    reconnect_grace_seconds: float = Field(default=120, ge=0)
    heartbeat_timeout_seconds: float = Field(default=60, ge=0)  # 0 disables the monitor

    # Names allowed to register as host; empty allows anyone.
    host_names: list[str] = []
    ticket_ttl_seconds: int = Field(default=DEFAULT_TICKET_TTL_SECONDS, ge=60)

    # Per-connection message rate: sustained messages/sec and burst size.
    rate_limit_per_second: float = Field(default=20.0, gt=0)
    rate_limit_burst: int = Field(default=40, ge=1)

    # Read from AUTH_TICKET_SECRET (not BINGO_TICKET_SECRET) so the HTTP front
    # door and the WebSocket endpoint share one auth variable.
    ticket_secret: str = Field(validation_alias="AUTH_TICKET_SECRET", min_length=1)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @field_validator("host_names", mode="before")
    @classmethod
    def validate_host_names(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    def may_host(self, player_name: str) -> bool:
        return not self.host_names or player_name in self.host_names

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
