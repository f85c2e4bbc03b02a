"""Integration tests for the HTTP endpoints."""

import pytest
from starlette.testclient import TestClient

from bingo.server.app import create_app
from bingo.server.settings import BingoServerSettings
from bingo.tests.helpers.auth import TEST_TICKET_SECRET
from bingo.tests.helpers.websocket import join_room, register
from shared.auth.ticket import verify_ticket


@pytest.fixture
def client():
    settings = BingoServerSettings(reconnect_grace_seconds=0, heartbeat_timeout_seconds=0)
    with TestClient(create_app(settings=settings)) as client:
        yield client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_status_reports_capacity(self, client):
        body = client.get("/status").json()
        assert body["rooms"] == 0
        assert body["max_rooms"] == 1
        assert body["connections"] == 0


class TestRegisterPlayer:
    def test_host_registration_issues_ticket_and_room(self, client):
        body = register(client, "Alice", is_host=True)

        ticket = verify_ticket(body["ticket"], TEST_TICKET_SECRET)
        assert ticket is not None
        assert ticket.display_name == "Alice"
        assert ticket.is_host is True
        assert body["room_id"].startswith("room-")
        assert body["player"] == {"display_name": "Alice", "is_host": True}

    def test_player_without_open_room_gets_404(self, client):
        response = client.post("/players", json={"player_name": "Bob"})

        assert response.status_code == 404
        assert response.json()["error"] == "room_not_found"

    def test_player_gets_the_single_room(self, client):
        host = register(client, "Alice", is_host=True)
        with client.websocket_connect(f"/ws?ticket={host['ticket']}") as ws:
            join_room(ws, host["room_id"], is_host=True)

            body = register(client, "Bob")

        assert body["room_id"] == host["room_id"]
        assert verify_ticket(body["ticket"], TEST_TICKET_SECRET).is_host is False

    def test_second_host_at_capacity_gets_503(self, client):
        host = register(client, "Alice", is_host=True)
        with client.websocket_connect(f"/ws?ticket={host['ticket']}") as ws:
            join_room(ws, host["room_id"], is_host=True)

            response = client.post("/players", json={"player_name": "Zed", "is_host": True})

        assert response.status_code == 503
        assert response.json()["error"] == "room_limit_reached"

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[]",
            b'{"player_name": ""}',
            b'{"player_name": "   "}',
            b'{"player_name": "Al", "is_host": "yes"}',
            b'{"player_name": "Al", "extra": 1}',
            b'{"player_name": "Al", "room_id": "bad id"}',
        ],
    )
    def test_invalid_body_rejected(self, client, body):
        response = client.post("/players", content=body, headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    def test_oversized_body_rejected(self, client):
        response = client.post("/players", content=b"x" * 5000)
        assert response.status_code == 413


def test_host_names_restrict_host_privilege():
    settings = BingoServerSettings(host_names=["Alice"], heartbeat_timeout_seconds=0)
    with TestClient(create_app(settings=settings)) as client:
        host = register(client, "Alice", is_host=True)
        with client.websocket_connect(f"/ws?ticket={host['ticket']}") as ws:
            join_room(ws, host["room_id"], is_host=True)

            body = register(client, "Mallory", is_host=True)

    assert host["player"]["is_host"] is True
    assert body["player"]["is_host"] is False
    assert body["room_id"] == host["room_id"]
