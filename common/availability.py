"""Decides whether a requested meeting window can be booked.

The checks run in a fixed order and stop at the first failure, so callers
always get the most basic problem with a request first: a malformed window,
then a missing owner, the organization's quota, a clash in the room, and
finally the room's weekly schedule. Virtual meetings (no room) only need a
valid window.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import FrozenSet, Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .exceptions import ValidationResult
from .quota import count_active_room_bookings, quota_exceeded, start_of_today
from .timeutils import Weekday, to_utc_naive, utcnow, weekday_of

logger = logging.getLogger(__name__)

__all__ = ["ValidationResult", "validate_window", "validate_meeting", "room_is_free"]


def validate_window(
    start: Optional[datetime],
    end: Optional[datetime],
    *,
    now: Optional[datetime] = None,
    min_duration: Optional[timedelta] = None,
) -> ValidationResult:
    if start is None or end is None:
        return ValidationResult.INVALID_TIME
    start, end = to_utc_naive(start), to_utc_naive(end)
    if min_duration is None:
        min_duration = timedelta(minutes=get_settings().meeting_min_duration_minutes)
    # a non-positive duration is always shorter than the minimum
    if end - start < min_duration or end <= start:
        return ValidationResult.INVALID_TIME
    if start < to_utc_naive(now or utcnow()):
        return ValidationResult.INVALID_TIME
    return ValidationResult.OK


def room_is_free(
    meetings,
    room_id: int,
    start: datetime,
    end: datetime,
    exclude_meeting_id: Optional[int] = None,
) -> bool:
    booked = meetings.find_overlapping(start, end)
    return not any(
        entry.room_id == room_id for entry in booked if entry.meeting_id != exclude_meeting_id
    )


def validate_meeting(
    meetings,
    rooms,
    start: Optional[datetime],
    end: Optional[datetime],
    room_id: Optional[int] = None,
    meeting_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
    max_room_bookings: Optional[int] = None,
    available_days: Optional[FrozenSet[Weekday]] = None,
) -> ValidationResult:
    """Run every booking rule against a request.

    ``meetings`` and ``rooms`` are the meeting and room repositories.
    ``meeting_id`` identifies the meeting being edited so it neither counts
    toward the quota nor conflicts with itself. Callers that hold the room
    row locked pass its ``available_days``; only read-only checks fall back
    to the cached lookup.
    """

    now = to_utc_naive(now) or utcnow()
    window = validate_window(start, end, now=now)
    if not window.ok:
        return window
    if room_id is None:
        return ValidationResult.OK
    if organization_id is None:
        return ValidationResult.BAD_ORGANIZATION

    start, end = to_utc_naive(start), to_utc_naive(end)
    try:
        active = count_active_room_bookings(
            meetings, organization_id, after=start_of_today(now), exclude_meeting_id=meeting_id
        )
        if quota_exceeded(active, max_room_bookings):
            return ValidationResult.QUOTA_EXCEEDED

        if not room_is_free(meetings, room_id, start, end, exclude_meeting_id=meeting_id):
            return ValidationResult.ROOM_CONFLICT

        if available_days is None:
            available_days = rooms.get_available_days(room_id)
    except SQLAlchemyError:
        logger.exception(
            "Meeting validation failed for room=%s organization=%s meeting=%s", room_id, organization_id, meeting_id
        )
        return ValidationResult.INTERNAL_ERROR

    if available_days is None:
        logger.error("Room %s vanished while validating a booking", room_id)
        return ValidationResult.INTERNAL_ERROR
    if weekday_of(start) not in available_days:
        return ValidationResult.UNAVAILABLE_DAY
    return ValidationResult.OK
