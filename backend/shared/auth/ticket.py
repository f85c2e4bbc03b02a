"""HMAC-SHA256 signed player tickets.

Tickets are issued by ``POST /players`` and presented when opening the
WebSocket. The server verifies them locally with a shared secret, so no
ticket state is stored server-side.

Token format: base64url(json_payload_bytes).base64url(hmac_sha256_signature)
"""

import base64
import binascii
import hashlib
import hmac
import json
import math
import time
from dataclasses import asdict, dataclass
from uuid import uuid4

import structlog

logger = structlog.get_logger()

_TOKEN_PARTS = 2

DEFAULT_TICKET_TTL_SECONDS = 4 * 60 * 60
CLOCK_SKEW_SECONDS = 60


@dataclass
class PlayerTicket:
    """Identity claims carried by a signed ticket."""

    ticket_id: str
    display_name: str
    is_host: bool
    issued_at: float
    expires_at: float


def create_signed_ticket(
    display_name: str,
    secret: str,
    *,
    is_host: bool = False,
    ttl_seconds: int = DEFAULT_TICKET_TTL_SECONDS,
) -> str:
    """Issue a fresh ticket for ``display_name`` and return the signed token."""
    now = time.time()
    ticket = PlayerTicket(
        ticket_id=uuid4().hex,
        display_name=display_name,
        is_host=is_host,
        issued_at=now,
        expires_at=now + ttl_seconds,
    )
    return sign_ticket(ticket, secret)


def sign_ticket(ticket: PlayerTicket, secret: str) -> str:
    payload_bytes = json.dumps(asdict(ticket), sort_keys=True).encode()
    sig = hmac.new(secret.encode(), payload_bytes, hashlib.sha256).digest()
    return f"{base64.urlsafe_b64encode(payload_bytes).decode()}.{base64.urlsafe_b64encode(sig).decode()}"


def verify_ticket(
    token: str,
    secret: str,
    *,
    max_ttl_seconds: int = DEFAULT_TICKET_TTL_SECONDS,
) -> PlayerTicket | None:
    """Check signature, payload shape and expiry. Return None on any failure."""
    parts = token.split(".")
    if len(parts) != _TOKEN_PARTS:
        return None

    try:
        payload_bytes = base64.urlsafe_b64decode(parts[0])
        provided_sig = base64.urlsafe_b64decode(parts[1])
    except (ValueError, binascii.Error):
        return None

    expected_sig = hmac.new(secret.encode(), payload_bytes, hashlib.sha256).digest()
    if not hmac.compare_digest(provided_sig, expected_sig):
        logger.debug("ticket signature mismatch")
        return None

    try:
        ticket = PlayerTicket(**json.loads(payload_bytes))
    except (json.JSONDecodeError, TypeError):
        logger.debug("ticket payload malformed")
        return None

    if not isinstance(ticket.display_name, str) or not isinstance(ticket.is_host, bool):
        logger.debug("ticket claims have wrong types")
        return None

    if not _timestamps_valid(ticket, max_ttl_seconds):
        return None

    return ticket


def _is_finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _timestamps_valid(ticket: PlayerTicket, max_ttl_seconds: int) -> bool:
    if not _is_finite_number(ticket.issued_at) or not _is_finite_number(ticket.expires_at):
        logger.debug("ticket timestamps not finite")
        return False

    now = time.time()
    if ticket.issued_at > now + CLOCK_SKEW_SECONDS:
        logger.debug("ticket issued in the future")
        return False
    if ticket.expires_at <= ticket.issued_at:
        logger.debug("ticket expires before it was issued")
        return False
    if ticket.expires_at - ticket.issued_at > max_ttl_seconds + CLOCK_SKEW_SECONDS:
        logger.debug("ticket lifetime too long")
        return False
    if now > ticket.expires_at:
        logger.debug("ticket expired")
        return False
    return True
