"""Tests for signed player tickets."""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import asdict

import pytest

from shared.auth import DEFAULT_TICKET_TTL_SECONDS, PlayerTicket, create_signed_ticket, sign_ticket, verify_ticket
from shared.auth.ticket import CLOCK_SKEW_SECONDS

SECRET = "ticket-test-secret"


def _ticket(*, issued_at: float | None = None, lifetime: float = 3600, **overrides) -> PlayerTicket:
    issued = time.time() if issued_at is None else issued_at
    fields = {
        "ticket_id": "t-1",
        "display_name": "Alice",
        "is_host": False,
        "issued_at": issued,
        "expires_at": issued + lifetime,
        **overrides,
    }
    return PlayerTicket(**fields)


def _sign_raw(payload: object, secret: str = SECRET) -> str:
    payload_bytes = json.dumps(payload, sort_keys=True).encode()
    sig = hmac.new(secret.encode(), payload_bytes, hashlib.sha256).digest()
    return f"{base64.urlsafe_b64encode(payload_bytes).decode()}.{base64.urlsafe_b64encode(sig).decode()}"


class TestIssue:
    def test_created_ticket_verifies(self):
        token = create_signed_ticket("Alice", SECRET, is_host=True)

        ticket = verify_ticket(token, SECRET)

        assert ticket is not None
        assert ticket.display_name == "Alice"
        assert ticket.is_host is True
        assert ticket.expires_at - ticket.issued_at == pytest.approx(DEFAULT_TICKET_TTL_SECONDS)

    def test_each_ticket_has_a_fresh_id(self):
        first = verify_ticket(create_signed_ticket("Alice", SECRET), SECRET)
        second = verify_ticket(create_signed_ticket("Alice", SECRET), SECRET)
        assert first.ticket_id != second.ticket_id

    def test_custom_ttl_checked_against_max(self):
        token = create_signed_ticket("Alice", SECRET, ttl_seconds=600)
        assert verify_ticket(token, SECRET, max_ttl_seconds=600) is not None
        assert verify_ticket(token, SECRET, max_ttl_seconds=300) is None


class TestSignature:
    def test_wrong_secret_rejected(self):
        assert verify_ticket(sign_ticket(_ticket(), SECRET), "other-secret") is None

    def test_edited_payload_rejected(self):
        ticket = _ticket()
        _payload, signature = sign_ticket(ticket, SECRET).split(".")
        forged_payload = _sign_raw({**asdict(ticket), "is_host": True}).split(".")[0]
        assert verify_ticket(f"{forged_payload}.{signature}", SECRET) is None

    def test_flipped_signature_byte_rejected(self):
        payload, signature = sign_ticket(_ticket(), SECRET).split(".")
        sig = bytearray(base64.urlsafe_b64decode(signature))
        sig[0] ^= 0xFF
        assert verify_ticket(f"{payload}.{base64.urlsafe_b64encode(bytes(sig)).decode()}", SECRET) is None

    @pytest.mark.parametrize("token", ["", "nodot", "a.b.c", "!!!.AAAA", "e30=.!!!"])
    def test_malformed_tokens_rejected(self, token):
        assert verify_ticket(token, SECRET) is None


class TestClaims:
    @pytest.mark.parametrize(
        "payload",
        [
            {"display_name": "Alice"},
            ["not", "an", "object"],
            {"ticket_id": "t", "display_name": "Alice", "is_host": False, "issued_at": 1, "expires_at": 2, "x": 1},
        ],
    )
    def test_wrong_shape_rejected(self, payload):
        assert verify_ticket(_sign_raw(payload), SECRET) is None

    @pytest.mark.parametrize(("field", "value"), [("display_name", 42), ("is_host", "yes"), ("is_host", 1)])
    def test_wrong_claim_types_rejected(self, field, value):
        now = time.time()
        payload = {
            "ticket_id": "t",
            "display_name": "Alice",
            "is_host": False,
            "issued_at": now,
            "expires_at": now + 60,
            field: value,
        }
        assert verify_ticket(_sign_raw(payload), SECRET) is None


class TestLifetime:
    def test_expired_rejected(self):
        past = time.time() - 7200
        assert verify_ticket(sign_ticket(_ticket(issued_at=past), SECRET), SECRET) is None

    def test_issued_within_skew_accepted(self):
        soon = time.time() + CLOCK_SKEW_SECONDS - 5
        assert verify_ticket(sign_ticket(_ticket(issued_at=soon), SECRET), SECRET) is not None

    def test_issued_beyond_skew_rejected(self):
        later = time.time() + CLOCK_SKEW_SECONDS + 100
        assert verify_ticket(sign_ticket(_ticket(issued_at=later), SECRET), SECRET) is None

    @pytest.mark.parametrize("lifetime", [0, -100])
    def test_non_positive_lifetime_rejected(self, lifetime):
        assert verify_ticket(sign_ticket(_ticket(lifetime=lifetime), SECRET), SECRET) is None

    def test_overlong_lifetime_rejected(self):
        ticket = _ticket(lifetime=DEFAULT_TICKET_TTL_SECONDS + CLOCK_SKEW_SECONDS + 1)
        assert verify_ticket(sign_ticket(ticket, SECRET), SECRET) is None

    @pytest.mark.parametrize(
        ("issued_at", "expires_at"),
        [(float("inf"), 10.0), (1.0, float("nan")), ("soon", 10.0), (True, 10.0)],
    )
    def test_non_finite_or_non_numeric_timestamps_rejected(self, issued_at, expires_at):
        payload = {
            "ticket_id": "t",
            "display_name": "Alice",
            "is_host": False,
            "issued_at": issued_at,
            "expires_at": expires_at,
        }
        assert verify_ticket(_sign_raw(payload), SECRET) is None
