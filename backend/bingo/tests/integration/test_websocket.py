"""Integration tests for the WebSocket endpoint.

These drive a real Starlette app through the test client: ticket checks at
connect time, MessagePack framing, and a full game between two players.
"""

import time

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from bingo.server.app import create_app
from bingo.server.settings import BingoServerSettings
from bingo.server.websocket import AUTH_CLOSE_CODE, DECODE_ERRORS_CLOSE_CODE, FORBIDDEN_ORIGIN_CLOSE_CODE
from bingo.tests.helpers.auth import TEST_TICKET_SECRET
from bingo.tests.helpers.websocket import join_room, recv_until, recv_ws, register, send_ws
from shared.auth.ticket import PlayerTicket, sign_ticket


def _settings(**overrides) -> BingoServerSettings:
    return BingoServerSettings(**{"reconnect_grace_seconds": 0, "heartbeat_timeout_seconds": 0, **overrides})


@pytest.fixture
def client():
    with TestClient(create_app(settings=_settings())) as client:
        yield client


def _expect_close(ws) -> WebSocketDisconnect:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        ws.receive_bytes()
    return exc_info.value


class TestConnectAuthentication:
    def test_missing_ticket_closes_with_4001(self, client):
        with client.websocket_connect("/ws") as ws:
            exc = _expect_close(ws)
        assert exc.code == AUTH_CLOSE_CODE
        assert exc.reason == "authentication_required"

    def test_tampered_ticket_closes_with_4001(self, client):
        ticket = register(client, "Alice", is_host=True)["ticket"]
        payload, _signature = ticket.split(".")
        tampered = f"{payload}.{'A' * 43}="

        with client.websocket_connect(f"/ws?ticket={tampered}") as ws:
            exc = _expect_close(ws)
        assert exc.code == AUTH_CLOSE_CODE
        assert exc.reason == "authentication_invalid"

    def test_expired_ticket_closes_with_4001(self, client):
        now = time.time()
        expired = PlayerTicket(
            ticket_id="t",
            display_name="Alice",
            is_host=True,
            issued_at=now - 7200,
            expires_at=now - 3600,
        )
        with client.websocket_connect(f"/ws?ticket={sign_ticket(expired, TEST_TICKET_SECRET)}") as ws:
            exc = _expect_close(ws)
        assert exc.reason == "authentication_invalid"

    def test_wrong_origin_closes_with_4003(self):
        app = create_app(settings=_settings(ws_allowed_origin="http://bingo.example"))
        with TestClient(app) as client:
            ticket = register(client, "Alice", is_host=True)["ticket"]
            with client.websocket_connect(f"/ws?ticket={ticket}", headers={"origin": "http://evil.example"}) as ws:
                exc = _expect_close(ws)
        assert exc.code == FORBIDDEN_ORIGIN_CLOSE_CODE

    def test_allowed_origin_connects(self):
        app = create_app(settings=_settings(ws_allowed_origin="http://bingo.example"))
        with TestClient(app) as client:
            host = register(client, "Alice", is_host=True)
            with client.websocket_connect(
                f"/ws?ticket={host['ticket']}",
                headers={"origin": "http://bingo.example"},
            ) as ws:
                ack = join_room(ws, host["room_id"], is_host=True)
        assert ack["is_host"] is True


class TestFraming:
    def test_ping_pong(self, client):
        ticket = register(client, "Alice", is_host=True)["ticket"]
        with client.websocket_connect(f"/ws?ticket={ticket}") as ws:
            send_ws(ws, {"type": "ping"})
            assert recv_ws(ws) == {"type": "pong"}

    def test_unknown_message_type_gets_invalid_message(self, client):
        ticket = register(client, "Alice", is_host=True)["ticket"]
        with client.websocket_connect(f"/ws?ticket={ticket}") as ws:
            send_ws(ws, {"type": "shout"})
            response = recv_ws(ws)
        assert response["type"] == "error"
        assert response["code"] == "invalid_message"

    def test_bad_fields_get_validation_failed(self, client):
        ticket = register(client, "Alice", is_host=True)["ticket"]
        with client.websocket_connect(f"/ws?ticket={ticket}") as ws:
            send_ws(ws, {"type": "call_number", "room_id": "r1", "number": {"value": 0, "category": "B"}})
            response = recv_ws(ws)
        assert response["code"] == "validation_failed"
        assert response["event"] == "call_number"

    def test_repeated_garbage_disconnects(self, client):
        ticket = register(client, "Alice", is_host=True)["ticket"]
        with client.websocket_connect(f"/ws?ticket={ticket}") as ws:
            for _ in range(5):
                ws.send_bytes(b"\xc1")
            errors = [recv_ws(ws) for _ in range(5)]
            exc = _expect_close(ws)

        assert {e["code"] for e in errors} == {"invalid_message"}
        assert exc.code == DECODE_ERRORS_CLOSE_CODE


class TestGameFlow:
    def test_two_player_game(self, client):
        host = register(client, "Alice", is_host=True)
        room_id = host["room_id"]

        with client.websocket_connect(f"/ws?ticket={host['ticket']}") as alice:
            alice_ack = join_room(alice, room_id, is_host=True)
            assert alice_ack["is_host"] is True
            recv_until(alice, "room_update")

            player = register(client, "Bob")
            with client.websocket_connect(f"/ws?ticket={player['ticket']}") as bob:
                bob_ack = join_room(bob, room_id)
                assert bob_ack["is_host"] is False
                assert [p["display_name"] for p in bob_ack["room"]["players"]] == ["Alice", "Bob"]
                recv_until(bob, "room_update")
                recv_until(alice, "room_update")

                send_ws(bob, {"type": "start", "room_id": room_id})
                denied = recv_ws(bob)
                assert denied["code"] == "authorization_denied"

                send_ws(alice, {"type": "start", "room_id": room_id})
                assert [m["type"] for m in recv_until(alice, "room_update")] == ["ack", "game_started", "room_update"]
                recv_until(bob, "room_update")

                send_ws(alice, {"type": "call_number", "room_id": room_id, "number": {"value": 7, "category": "B"}})
                called = recv_until(bob, "number_called")[-1]
                assert called["number"] == {"value": 7, "category": "B"}
                recv_until(bob, "room_update")

                send_ws(bob, {"type": "claim_win", "room_id": room_id, "pattern": "line", "marked_cells": [7]})
                messages = recv_until(bob, "game_finished")
                assert [m["type"] for m in messages] == ["ack", "bingo_claimed", "room_update", "game_finished"]
                assert messages[0]["valid"] is True
                assert messages[1]["winner"]["player_display_name"] == "Bob"
                assert messages[2]["room"]["status"] == "finished"

                send_ws(alice, {"type": "reset", "room_id": room_id})
                reset_messages = recv_until(bob, "room_update")
                assert reset_messages[-2] == {"type": "bingo_claimed", "winner": None}
                assert reset_messages[-1]["room"]["status"] == "waiting"

    def test_rejected_actions_keep_the_connection_open(self, client):
        host = register(client, "Alice", is_host=True)
        room_id = host["room_id"]

        with client.websocket_connect(f"/ws?ticket={host['ticket']}") as alice:
            join_room(alice, room_id, is_host=True)
            player = register(client, "Bob")
            with client.websocket_connect(f"/ws?ticket={player['ticket']}") as bob:
                join_room(bob, room_id)
                recv_until(bob, "room_update")

                send_ws(bob, {"type": "reset", "room_id": room_id})
                assert recv_ws(bob)["code"] == "authorization_denied"
                send_ws(bob, {"type": "claim_win", "room_id": room_id, "pattern": "line"})
                assert recv_ws(bob)["code"] == "invalid_state"
                send_ws(bob, {"type": "start"})
                assert recv_ws(bob)["code"] == "validation_failed"

                send_ws(bob, {"type": "ping"})
                assert recv_ws(bob) == {"type": "pong"}
                send_ws(alice, {"type": "start", "room_id": room_id})
                assert recv_until(bob, "game_started")[-1]["room"]["status"] == "playing"
