"""In-memory stand-ins for the repositories the scheduling core talks to."""
from datetime import datetime
from itertools import count

import pytest
from sqlalchemy.exc import SQLAlchemyError

from common.models import Meeting
from common.repositories import BookedRoom, RemovedMeeting
from common.timeutils import Weekday

# Monday, January 7 2030, 12:00 UTC (07:00 in New York)
NOW = datetime(2030, 1, 7, 12, 0)


class FakeMeetingRepository:
    def __init__(self) -> None:
        self.meetings: dict[int, Meeting] = {}
        self._ids = count(1)
        self.commits = 0
        self.rollbacks = 0
        self.fail_reads = False
        self.fail_deletes = False

    def add(self, organization_id, start, end, room_id=None, title="Meeting") -> Meeting:
        meeting = Meeting(
            id=next(self._ids),
            organization_id=organization_id,
            room_id=room_id,
            start_time=start,
            end_time=end,
            title=title,
            description="",
        )
        self.meetings[meeting.id] = meeting
        return meeting

    def get(self, meeting_id):
        return self.meetings.get(meeting_id)

    def find_overlapping(self, start, end):
        if self.fail_reads:
            raise SQLAlchemyError("database unavailable")
        return [
            BookedRoom(room_id=meeting.room_id, meeting_id=meeting.id)
            for meeting in self.meetings.values()
            if meeting.start_time < end and meeting.end_time > start
        ]

    def count_future_room_bookings(self, organization_id, after, exclude_id=None):
        if self.fail_reads:
            raise SQLAlchemyError("database unavailable")
        return sum(
            1
            for meeting in self.meetings.values()
            if meeting.organization_id == organization_id
            and meeting.room_id is not None
            and meeting.start_time >= after
            and meeting.id != exclude_id
        )

    def delete_and_return(self, meeting_id):
        if self.fail_deletes:
            raise SQLAlchemyError("delete failed")
        meeting = self.meetings.pop(meeting_id, None)
        return None if meeting is None else RemovedMeeting.from_meeting(meeting)

    def insert(self, meeting):
        meeting.id = next(self._ids)
        self.meetings[meeting.id] = meeting
        return meeting

    def update(self, meeting, **fields):
        for key, value in fields.items():
            setattr(meeting, key, value)
        return meeting

    def list_by_room(self, room_id):
        return sorted(
            (meeting for meeting in self.meetings.values() if meeting.room_id == room_id),
            key=lambda meeting: meeting.start_time,
        )

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeRoom:
    def __init__(self, room_id, available_days):
        self.id = room_id
        self.available_days = [day.value for day in available_days]
        self.name = f"Room {room_id}"


class FakeRoomRepository:
    def __init__(self) -> None:
        self.rooms: dict[int, FakeRoom] = {}
        self.invalidated = []

    def add(self, room_id, available_days=tuple(Weekday)):
        self.rooms[room_id] = FakeRoom(room_id, available_days)
        return self.rooms[room_id]

    def get(self, room_id):
        return self.rooms.get(room_id)

    def lock(self, room_id):
        return self.rooms.get(room_id)

    def get_available_days(self, room_id):
        room = self.rooms.get(room_id)
        return None if room is None else frozenset(Weekday(day) for day in room.available_days)

    def update(self, room, available_days=None, **fields):
        if available_days is not None:
            room.available_days = [day.value for day in available_days]
        for key, value in fields.items():
            setattr(room, key, value)
        return room

    def delete(self, room):
        self.rooms.pop(room.id, None)

    def invalidate(self, room_id):
        self.invalidated.append(room_id)


class RecordingNotifier:
    def __init__(self, fail=False) -> None:
        self.events = []
        self.fail = fail

    def notify(self, organization_id, event):
        if self.fail:
            raise ConnectionError("broker down")
        self.events.append((organization_id, event))


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def meetings():
    return FakeMeetingRepository()


@pytest.fixture()
def rooms():
    return FakeRoomRepository()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def broken_notifier():
    return RecordingNotifier(fail=True)
