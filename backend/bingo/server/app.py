from __future__ import annotations

import contextlib
import json
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from bingo.logic.exceptions import RoomError, RoomErrorCode, RoomLimitReachedError, RoomNotFoundError
from bingo.logic.pool import load_number_pool
from bingo.logic.state_machine import RoomStateMachine
from bingo.logic.win_check import build_win_predicate
from bingo.messaging.router import MessageRouter
from bingo.server.settings import BingoServerSettings
from bingo.server.types import RegisterPlayerRequest
from bingo.server.websocket import websocket_endpoint
from bingo.session.manager import SessionManager
from shared.auth.ticket import create_signed_ticket
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.logging import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

logger = structlog.get_logger()

_MAX_REQUEST_BODY_SIZE = 4096

_ERROR_STATUS: dict[type[RoomError], int] = {
    RoomLimitReachedError: 503,
    RoomNotFoundError: 404,
}


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT})


async def status(request: Request) -> JSONResponse:
    session_manager: SessionManager = request.app.state.session_manager
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "commit": GIT_COMMIT,
            **session_manager.room_summary(),
        },
    )


def _error_response(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": code, "message": message}, status_code=status_code)


async def register_player(request: Request) -> JSONResponse:
    """Issue a signed ticket and tell the player which room to join."""
    session_manager: SessionManager = request.app.state.session_manager
    settings: BingoServerSettings = request.app.state.settings

    try:
        raw_body = await request.body()
        if len(raw_body) > _MAX_REQUEST_BODY_SIZE:
            return _error_response(RoomErrorCode.VALIDATION_FAILED, "request body too large", 413)
        body = json.loads(raw_body)
        if not isinstance(body, dict):
            raise TypeError("request body must be a JSON object")
        player_request = RegisterPlayerRequest(**body)
    except (ValueError, TypeError, UnicodeDecodeError, ValidationError):
        return _error_response(RoomErrorCode.VALIDATION_FAILED, "invalid request body", 400)

    is_host = player_request.is_host and settings.may_host(player_request.player_name)
    try:
        room_id = session_manager.resolve_room_id(is_host=is_host, requested_room_id=player_request.room_id)
    except RoomError as e:
        return _error_response(e.code, str(e), _ERROR_STATUS.get(type(e), 409))

    ticket = create_signed_ticket(
        player_request.player_name,
        settings.ticket_secret,
        is_host=is_host,
        ttl_seconds=settings.ticket_ttl_seconds,
    )
    logger.info("player registered", display_name=player_request.player_name, is_host=is_host, room_id=room_id)
    return JSONResponse(
        {
            "ticket": ticket,
            "room_id": room_id,
            "player": {"display_name": player_request.player_name, "is_host": is_host},
        },
        status_code=201,
    )


def build_session_manager(settings: BingoServerSettings) -> SessionManager:
    machine = RoomStateMachine(
        load_number_pool(settings.number_pool_path),
        win_predicate=build_win_predicate(settings.win_check),
        winner_cap=settings.winner_cap,
    )
    return SessionManager(
        machine,
        max_rooms=settings.max_rooms,
        idle_policy=settings.idle_room_policy,
        idle_room_ttl_seconds=settings.idle_room_ttl_seconds,
        reconnect_grace_seconds=settings.reconnect_grace_seconds,
        heartbeat_timeout_seconds=settings.heartbeat_timeout_seconds,
    )


def create_app(
    settings: BingoServerSettings | None = None,
    session_manager: SessionManager | None = None,
    message_router: MessageRouter | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = BingoServerSettings()  # ty: ignore[missing-argument]

    if session_manager is None:
        session_manager = build_session_manager(settings)

    if message_router is None:
        message_router = MessageRouter(session_manager)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, message_router, settings)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        Route("/players", register_player, methods=["POST"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        await session_manager.start()
        logger.info("bingo server ready", max_rooms=settings.max_rooms, winner_cap=settings.winner_cap)
        try:
            yield
        finally:
            await session_manager.shutdown()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.session_manager = session_manager
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    _settings = BingoServerSettings()  # ty: ignore[missing-argument]
    setup_logging(log_dir=_settings.log_dir)
    return create_app(settings=_settings)
