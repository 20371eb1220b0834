"""Outcome taxonomy for meeting scheduling."""
from __future__ import annotations

from enum import Enum

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ValidationResult(str, Enum):
    OK = "ok"
    INVALID_TIME = "invalid_time"
    BAD_ORGANIZATION = "bad_organization"
    QUOTA_EXCEEDED = "quota_exceeded"
    ROOM_CONFLICT = "room_conflict"
    UNAVAILABLE_DAY = "unavailable_day"
    INTERNAL_ERROR = "internal_error"

    @property
    def ok(self) -> bool:
        return self is ValidationResult.OK

    @property
    def message(self) -> str:
        return _MESSAGES[self]

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_MESSAGES = {
    ValidationResult.OK: "Meeting is valid.",
    ValidationResult.INVALID_TIME: "Invalid meeting time or length.",
    ValidationResult.BAD_ORGANIZATION: "Room bookings must belong to an organization.",
    ValidationResult.QUOTA_EXCEEDED: "Organization has reached its limit of upcoming room bookings.",
    ValidationResult.ROOM_CONFLICT: "Room is already booked at that time.",
    ValidationResult.UNAVAILABLE_DAY: "Room is not available on that day of the week.",
    ValidationResult.INTERNAL_ERROR: "Could not validate meeting.",
}

_STATUS_CODES = {
    ValidationResult.OK: status.HTTP_200_OK,
    ValidationResult.INVALID_TIME: status.HTTP_400_BAD_REQUEST,
    ValidationResult.BAD_ORGANIZATION: status.HTTP_400_BAD_REQUEST,
    ValidationResult.QUOTA_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    ValidationResult.ROOM_CONFLICT: status.HTTP_409_CONFLICT,
    ValidationResult.UNAVAILABLE_DAY: status.HTTP_400_BAD_REQUEST,
    ValidationResult.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class SchedulingError(Exception):
    """A booking operation was refused or could not complete."""

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(result.message)
        self.result = result


class RoomNotFoundError(LookupError):
    def __init__(self, room_id: int) -> None:
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


def scheduling_error_handler(_: Request, exc: SchedulingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.result.status_code,
        content={"detail": exc.result.message, "reason": exc.result.value},
    )


def room_not_found_handler(_: Request, exc: RoomNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Room not found"})
