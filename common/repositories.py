"""SQLAlchemy-backed repositories consumed by the scheduling core.

Repositories never commit on their own; the calling operation owns the
transaction and calls :meth:`MeetingRepository.commit` or ``rollback``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .cache import SimpleTTLCache
from .config import get_settings
from .models import Meeting, Room
from .timeutils import Weekday, to_utc_naive

settings = get_settings()

available_days_cache: SimpleTTLCache[frozenset] = SimpleTTLCache(ttl=settings.room_cache_ttl)


@dataclass(frozen=True)
class BookedRoom:
    room_id: Optional[int]
    meeting_id: int


@dataclass(frozen=True)
class RemovedMeeting:
    """Snapshot of a meeting taken before it was deleted."""

    id: int
    organization_id: int
    room_id: Optional[int]
    title: str
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_meeting(cls, meeting: Meeting) -> "RemovedMeeting":
        return cls(
            id=meeting.id,
            organization_id=meeting.organization_id,
            room_id=meeting.room_id,
            title=meeting.title,
            start_time=meeting.start_time,
            end_time=meeting.end_time,
        )


@dataclass
class MeetingDraft:
    """The fields of a meeting as requested, before it is stored."""

    organization_id: Optional[int]
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    room_id: Optional[int] = None
    title: str = ""
    description: str = ""
    is_public: bool = True
    advisor: Optional[str] = None

    def __post_init__(self) -> None:
        self.start_time = to_utc_naive(self.start_time)
        self.end_time = to_utc_naive(self.end_time)

    def fields(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "room_id": self.room_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "title": self.title,
            "description": self.description,
            "is_public": self.is_public,
            "advisor": self.advisor,
        }

    def to_model(self) -> Meeting:
        return Meeting(**self.fields())


class MeetingRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, meeting_id: int) -> Optional[Meeting]:
        return self.db.get(Meeting, meeting_id)

    def find_overlapping(self, start: datetime, end: datetime) -> List[BookedRoom]:
        """Every meeting, in any room, whose ``[start_time, end_time)`` intersects ``[start, end)``."""

        rows = self.db.execute(
            select(Meeting.room_id, Meeting.id).where(Meeting.start_time < end, Meeting.end_time > start)
        ).all()
        return [BookedRoom(room_id=room_id, meeting_id=meeting_id) for room_id, meeting_id in rows]

    def count_future_room_bookings(
        self,
        organization_id: int,
        after: datetime,
        exclude_id: Optional[int] = None,
    ) -> int:
        query = select(func.count(Meeting.id)).where(
            Meeting.organization_id == organization_id,
            Meeting.room_id.is_not(None),
            Meeting.start_time >= after,
        )
        if exclude_id is not None:
            query = query.where(Meeting.id != exclude_id)
        return self.db.execute(query).scalar_one()

    def delete_and_return(self, meeting_id: int) -> Optional[RemovedMeeting]:
        """Delete a meeting and return what it looked like.

        The row is read under a write lock in the same transaction as the
        delete, so the snapshot always describes the meeting that was removed.
        """

        meeting = self.db.execute(
            select(Meeting).where(Meeting.id == meeting_id).with_for_update()
        ).scalar_one_or_none()
        if meeting is None:
            return None
        snapshot = RemovedMeeting.from_meeting(meeting)
        self.db.delete(meeting)
        self.db.flush()
        return snapshot

    def insert(self, meeting: Meeting) -> Meeting:
        self.db.add(meeting)
        self.db.flush()
        return meeting

    def update(self, meeting: Meeting, **fields) -> Meeting:
        for key, value in fields.items():
            setattr(meeting, key, value)
        self.db.flush()
        return meeting

    def list_by_room(self, room_id: int) -> List[Meeting]:
        return list(
            self.db.execute(select(Meeting).where(Meeting.room_id == room_id).order_by(Meeting.start_time)).scalars()
        )

    def list_by_organization(self, organization_id: int, upcoming_after: Optional[datetime] = None) -> List[Meeting]:
        query = select(Meeting).where(Meeting.organization_id == organization_id)
        if upcoming_after is not None:
            query = query.where(Meeting.end_time >= upcoming_after)
        return list(self.db.execute(query.order_by(Meeting.start_time)).scalars())

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


def _as_weekdays(days: Iterable[str]) -> frozenset:
    return frozenset(Weekday(day) for day in days)


def room_days(room) -> frozenset:
    """Weekdays a loaded room row can be booked on."""

    return _as_weekdays(room.available_days or [])


class RoomRepository:
    def __init__(self, db: Session, cache: SimpleTTLCache[frozenset] = available_days_cache) -> None:
        self.db = db
        self.cache = cache

    @staticmethod
    def _days_key(room_id: int) -> str:
        return f"room-days:{room_id}"

    def get(self, room_id: int) -> Optional[Room]:
        return self.db.get(Room, room_id)

    def lock(self, room_id: int) -> Optional[Room]:
        """Take a row lock on the room so concurrent bookings for it serialize."""

        query = select(Room).where(Room.id == room_id).with_for_update().execution_options(populate_existing=True)
        return self.db.execute(query).scalar_one_or_none()

    def get_available_days(self, room_id: int) -> Optional[frozenset]:
        key = self._days_key(room_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        days = self.db.execute(select(Room.available_days).where(Room.id == room_id)).scalar_one_or_none()
        if days is None:
            return None
        result = _as_weekdays(days)
        self.cache.set(key, result)
        return result

    def update(self, room: Room, available_days: Optional[Iterable[Weekday]] = None, **fields) -> Room:
        if available_days is not None:
            room.available_days = [day.value for day in available_days]
        for key, value in fields.items():
            setattr(room, key, value)
        self.db.flush()
        self.invalidate(room.id)
        return room

    def delete(self, room: Room) -> None:
        room_id = room.id
        self.db.delete(room)
        self.db.flush()
        self.invalidate(room_id)

    def invalidate(self, room_id: int) -> None:
        self.cache.pop(self._days_key(room_id))
