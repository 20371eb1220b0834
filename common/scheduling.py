"""Ordinary meeting bookings: create, edit and cancel.

Each operation locks the requested room before validating, so the overlap
check and the write that depends on it happen in one transaction. A unique
constraint violation on write is reported as a late room conflict.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .availability import validate_meeting
from .exceptions import RoomNotFoundError, SchedulingError, ValidationResult
from .models import Meeting
from .notifications import Notifier, meeting_canceled, meeting_created, meeting_updated, safe_notify
from .repositories import MeetingDraft, RemovedMeeting, room_days

logger = logging.getLogger(__name__)


def _lock_and_validate(meetings, rooms, draft: MeetingDraft, meeting_id: Optional[int], now: Optional[datetime]) -> None:
    available_days = None
    try:
        if draft.room_id is not None:
            room = rooms.lock(draft.room_id)
            if room is None:
                raise RoomNotFoundError(draft.room_id)
            available_days = room_days(room)
    except SQLAlchemyError as exc:
        meetings.rollback()
        logger.exception("Could not lock room %s", draft.room_id)
        raise SchedulingError(ValidationResult.INTERNAL_ERROR) from exc

    result = validate_meeting(
        meetings,
        rooms,
        draft.start_time,
        draft.end_time,
        room_id=draft.room_id,
        meeting_id=meeting_id,
        organization_id=draft.organization_id,
        now=now,
        available_days=available_days,
    )
    if not result.ok:
        meetings.rollback()
        raise SchedulingError(result)


def _room_name(meeting: Meeting) -> Optional[str]:
    return meeting.room.name if meeting.room is not None else None


def _persist(meetings, write, context: str) -> Meeting:
    try:
        meeting = write()
        meetings.commit()
    except IntegrityError as exc:
        meetings.rollback()
        logger.warning("Room conflict detected on write while %s", context)
        raise SchedulingError(ValidationResult.ROOM_CONFLICT) from exc
    except SQLAlchemyError as exc:
        meetings.rollback()
        logger.exception("Database error while %s", context)
        raise SchedulingError(ValidationResult.INTERNAL_ERROR) from exc
    return meeting


def schedule_meeting(
    meetings,
    rooms,
    notifier: Notifier,
    draft: MeetingDraft,
    *,
    now: Optional[datetime] = None,
) -> Meeting:
    _lock_and_validate(meetings, rooms, draft, None, now)
    meeting = _persist(meetings, lambda: meetings.insert(draft.to_model()), "creating a meeting")
    safe_notify(notifier, meeting.organization_id, meeting_created(meeting, _room_name(meeting)))
    return meeting


def reschedule_meeting(
    meetings,
    rooms,
    notifier: Notifier,
    meeting: Meeting,
    draft: MeetingDraft,
    *,
    now: Optional[datetime] = None,
) -> Meeting:
    """Replace a meeting's time, room and details. The meeting keeps its organization."""

    draft = dataclasses.replace(draft, organization_id=meeting.organization_id)
    _lock_and_validate(meetings, rooms, draft, meeting.id, now)
    meeting = _persist(meetings, lambda: meetings.update(meeting, **draft.fields()), f"updating meeting {meeting.id}")
    safe_notify(notifier, meeting.organization_id, meeting_updated(meeting, _room_name(meeting)))
    return meeting


def cancel_meeting(meetings, notifier: Notifier, meeting_id: int) -> Optional[RemovedMeeting]:
    try:
        removed = meetings.delete_and_return(meeting_id)
        meetings.commit()
    except SQLAlchemyError as exc:
        meetings.rollback()
        logger.exception("Could not delete meeting %s", meeting_id)
        raise SchedulingError(ValidationResult.INTERNAL_ERROR) from exc
    if removed is not None:
        safe_notify(notifier, removed.organization_id, meeting_canceled(removed))
    return removed
