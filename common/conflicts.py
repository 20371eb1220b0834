"""Privileged operations that remove existing meetings to make room.

Every eviction follows the same order: collect and delete the affected
meetings in one transaction, commit the change that required them, and only
then tell each affected organization what it lost. Notifications never
affect the outcome of the operation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .availability import validate_window
from .exceptions import RoomNotFoundError, SchedulingError, ValidationResult
from .models import Meeting, Room
from .notifications import (
    ROOM_DAYS_REASON,
    ROOM_DELETED_REASON,
    Notifier,
    group_removed_by_organization,
    meeting_evicted,
    room_meetings_removed,
    safe_notify,
)
from .repositories import MeetingDraft, RemovedMeeting
from .timeutils import Weekday, weekday_of

logger = logging.getLogger(__name__)


@dataclass
class ReservationOutcome:
    meeting: Meeting
    evicted: List[RemovedMeeting] = field(default_factory=list)


def notify_removed(notifier: Notifier, removed: Iterable[RemovedMeeting], reason: str) -> int:
    """Send one aggregated notification per organization. Returns how many were delivered."""

    delivered = 0
    for organization_id, meetings in group_removed_by_organization(removed).items():
        if safe_notify(notifier, organization_id, room_meetings_removed(meetings, reason)):
            delivered += 1
    return delivered


def _delete_all(meetings, meeting_ids: Iterable[int]) -> List[RemovedMeeting]:
    removed = []
    for meeting_id in meeting_ids:
        snapshot = meetings.delete_and_return(meeting_id)
        if snapshot is not None:
            removed.append(snapshot)
    return removed


def force_reserve(
    meetings,
    notifier: Notifier,
    draft: MeetingDraft,
    *,
    rooms=None,
    now: Optional[datetime] = None,
) -> ReservationOutcome:
    """Book ``draft`` regardless of who currently holds the room, evicting them.

    Only the shape of the window is checked; quota and weekday rules do not
    apply to privileged reservations. The window check is the full one: a
    reservation that starts in the past or is shorter than
    ``meeting_min_duration_minutes`` is refused with ``INVALID_TIME`` even
    for privileged callers.
    """

    window = validate_window(draft.start_time, draft.end_time, now=now)
    if not window.ok:
        raise SchedulingError(window)
    if draft.organization_id is None:
        raise SchedulingError(ValidationResult.BAD_ORGANIZATION)

    try:
        if rooms is not None and draft.room_id is not None and rooms.lock(draft.room_id) is None:
            raise RoomNotFoundError(draft.room_id)
        occupants = [
            entry.meeting_id
            for entry in meetings.find_overlapping(draft.start_time, draft.end_time)
            if draft.room_id is not None and entry.room_id == draft.room_id
        ]
        evicted = _delete_all(meetings, occupants)
    except SQLAlchemyError as exc:
        meetings.rollback()
        logger.exception("Could not clear room %s for a forced reservation", draft.room_id)
        raise SchedulingError(ValidationResult.INTERNAL_ERROR) from exc

    try:
        meeting = meetings.insert(draft.to_model())
        meetings.commit()
    except IntegrityError as exc:
        meetings.rollback()
        raise SchedulingError(ValidationResult.ROOM_CONFLICT) from exc
    except SQLAlchemyError as exc:
        meetings.rollback()
        logger.exception("Could not insert forced reservation in room %s", draft.room_id)
        raise SchedulingError(ValidationResult.INTERNAL_ERROR) from exc

    if evicted:
        logger.info(
            "Forced reservation %s in room %s evicted meetings %s",
            meeting.id,
            draft.room_id,
            [removed.id for removed in evicted],
        )
    for removed in evicted:
        safe_notify(notifier, removed.organization_id, meeting_evicted(removed))
    return ReservationOutcome(meeting=meeting, evicted=evicted)


def remove_room(meetings, rooms, notifier: Notifier, room_id: int) -> List[RemovedMeeting]:
    """Delete a room together with every meeting booked in it."""

    try:
        room = rooms.lock(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        removed = _delete_all(meetings, [meeting.id for meeting in meetings.list_by_room(room_id)])
        rooms.delete(room)
        meetings.commit()
    except SQLAlchemyError as exc:
        meetings.rollback()
        logger.exception("Could not delete room %s", room_id)
        raise SchedulingError(ValidationResult.INTERNAL_ERROR) from exc
    rooms.invalidate(room_id)

    notify_removed(notifier, removed, ROOM_DELETED_REASON)
    return removed


def apply_available_days(
    meetings,
    rooms,
    notifier: Notifier,
    room_id: int,
    available_days: Optional[Iterable[Weekday]] = None,
    **fields,
) -> Tuple[Room, List[RemovedMeeting]]:
    """Edit a room and evict meetings that fall on days it no longer allows."""

    days = None if available_days is None else frozenset(available_days)
    try:
        room = rooms.lock(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        rooms.update(room, available_days=sorted(days, key=lambda day: day.index) if days is not None else None, **fields)
        removed: List[RemovedMeeting] = []
        if days is not None:
            stranded = [meeting.id for meeting in meetings.list_by_room(room_id) if weekday_of(meeting.start_time) not in days]
            removed = _delete_all(meetings, stranded)
        meetings.commit()
    except SQLAlchemyError as exc:
        meetings.rollback()
        logger.exception("Could not update room %s", room_id)
        raise SchedulingError(ValidationResult.INTERNAL_ERROR) from exc
    rooms.invalidate(room_id)

    notify_removed(notifier, removed, ROOM_DAYS_REASON)
    return room, removed
