"""Typed domain errors for room events.

Every rejected room event raises a subclass of RoomError. The session layer
catches RoomError at the event boundary and turns it into an ``error``
message for the issuing connection only, using the class's stable ``code``.
Anything that is not a RoomError is treated as an internal failure.
"""

from enum import StrEnum


class RoomErrorCode(StrEnum):
    AUTHENTICATION_REQUIRED = "authentication_required"
    AUTHENTICATION_INVALID = "authentication_invalid"
    AUTHORIZATION_DENIED = "authorization_denied"
    ROOM_NOT_FOUND = "room_not_found"
    ROOM_LIMIT_REACHED = "room_limit_reached"
    INVALID_STATE = "invalid_state"
    VALIDATION_FAILED = "validation_failed"
    DUPLICATE_NUMBER = "duplicate_number"
    DUPLICATE_CLAIM = "duplicate_claim"
    POOL_EXHAUSTED = "pool_exhausted"


class RoomError(Exception):
    """Base class for room event rejections."""

    code: RoomErrorCode = RoomErrorCode.INVALID_STATE


class AuthenticationRequiredError(RoomError):
    """No credential was presented."""

    code = RoomErrorCode.AUTHENTICATION_REQUIRED


class AuthenticationInvalidError(RoomError):
    """The credential is malformed, tampered with, or expired."""

    code = RoomErrorCode.AUTHENTICATION_INVALID


class AuthorizationDeniedError(RoomError):
    """The caller lacks the authority for this event (not host, not a member)."""

    code = RoomErrorCode.AUTHORIZATION_DENIED


class RoomNotFoundError(RoomError):
    code = RoomErrorCode.ROOM_NOT_FOUND

    def __init__(self, room_id: str | None) -> None:
        self.room_id = room_id
        super().__init__("no room is open" if room_id is None else f"room {room_id} does not exist")


class InvalidStateError(RoomError):
    """The event is not valid for the room's current status."""

    code = RoomErrorCode.INVALID_STATE


class RoomLimitReachedError(InvalidStateError):
    code = RoomErrorCode.ROOM_LIMIT_REACHED


class ValidationFailedError(RoomError):
    """The event payload is well-formed but semantically unacceptable."""

    code = RoomErrorCode.VALIDATION_FAILED


class DuplicateNumberError(ValidationFailedError):
    code = RoomErrorCode.DUPLICATE_NUMBER

    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(f"number {value} has already been called")


class DuplicateClaimError(RoomError):
    code = RoomErrorCode.DUPLICATE_CLAIM

    def __init__(self, player_id: str) -> None:
        self.player_id = player_id
        super().__init__("this player has already won")


class PoolExhaustedError(RoomError):
    code = RoomErrorCode.POOL_EXHAUSTED
