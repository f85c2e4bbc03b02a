"""Player identity tickets."""

from shared.auth.ticket import (
    DEFAULT_TICKET_TTL_SECONDS,
    PlayerTicket,
    create_signed_ticket,
    sign_ticket,
    verify_ticket,
)

__all__ = [
    "DEFAULT_TICKET_TTL_SECONDS",
    "PlayerTicket",
    "create_signed_ticket",
    "sign_ticket",
    "verify_ticket",
]
