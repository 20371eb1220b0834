"""Per-organization ceiling on upcoming in-person bookings."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from .config import get_settings
from .timeutils import start_of_local_day


def start_of_today(now: Optional[datetime] = None) -> datetime:
    """Quota cutoff: midnight of the current day in the scheduling time zone, as naive UTC."""

    return start_of_local_day(now)


def count_active_room_bookings(
    meetings,
    organization_id: int,
    after: Optional[datetime] = None,
    exclude_meeting_id: Optional[int] = None,
) -> int:
    """Count the organization's room-bound meetings starting on or after ``after``.

    ``exclude_meeting_id`` keeps a meeting that is being edited from counting
    against its own organization.
    """

    cutoff = after if after is not None else start_of_today()
    return meetings.count_future_room_bookings(organization_id, cutoff, exclude_id=exclude_meeting_id)


def quota_exceeded(count: int, limit: Optional[int] = None) -> bool:
    if limit is None:
        limit = get_settings().max_room_bookings_per_org
    return count >= limit
