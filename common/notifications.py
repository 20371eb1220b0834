"""Notification events and their delivery to the messaging broker.

The scheduling core only describes *what* happened to an organization. A
consumer on the ``notifications`` queue expands the organization into its
recipients, substitutes ``{ORG_NAME}`` and handles the actual email.
"""
from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import pika
from circuitbreaker import circuit

from .config import get_settings
from .repositories import RemovedMeeting
from .timeutils import format_local

logger = logging.getLogger(__name__)

FOOTER = "\n\nThe Club Scheduler Team"


class NotificationKind(str, Enum):
    MEETING_CREATED = "MeetingCreated"
    MEETING_UPDATED = "MeetingUpdated"
    MEETING_CANCELED = "MeetingCanceled"
    MEETING_EVICTED = "MeetingEvicted"
    ROOM_MEETINGS_REMOVED = "RoomMeetingsRemoved"


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    subject: str
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def as_message(self, organization_id: int) -> Dict[str, Any]:
        return {
            "event": self.kind.value,
            "organization_id": organization_id,
            "subject": self.subject,
            "message": self.message,
            **self.payload,
        }


class Notifier(Protocol):
    def notify(self, organization_id: int, event: NotificationEvent) -> None:
        ...


def safe_notify(notifier: Notifier, organization_id: int, event: NotificationEvent) -> bool:
    """Deliver ``event`` and report whether it went through. Failures are logged, never raised."""

    try:
        notifier.notify(organization_id, event)
    except Exception:
        logger.exception("Failed to send %s notification to organization %s", event.kind.value, organization_id)
        return False
    return True


class RabbitMQNotifier:
    """Publishes events as persistent JSON messages on a durable queue."""

    def __init__(self, host: str, port: int, queue: str, enabled: bool = True) -> None:
        self.host = host
        self.port = port
        self.queue = queue
        self.enabled = enabled

    @circuit(failure_threshold=5, recovery_timeout=60)
    def _publish(self, body: Dict[str, Any]) -> None:
        connection = pika.BlockingConnection(pika.ConnectionParameters(host=self.host, port=self.port))
        try:
            channel = connection.channel()
            channel.queue_declare(queue=self.queue, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=self.queue,
                body=json.dumps(body, default=str),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()

    def notify(self, organization_id: int, event: NotificationEvent) -> None:
        if not self.enabled:
            logger.debug("Notifications disabled; dropping %s for organization %s", event.kind.value, organization_id)
            return
        self._publish(event.as_message(organization_id))
        logger.info("Published %s for organization %s", event.kind.value, organization_id)


class DeferredNotifier:
    """Buffers events so they can be sent after the response has gone out."""

    def __init__(self) -> None:
        self.pending: List[Tuple[int, NotificationEvent]] = []

    def notify(self, organization_id: int, event: NotificationEvent) -> None:
        self.pending.append((organization_id, event))

    def flush(self, target: Notifier) -> int:
        pending, self.pending = self.pending, []
        return sum(safe_notify(target, organization_id, event) for organization_id, event in pending)


@lru_cache
def get_publisher() -> RabbitMQNotifier:
    settings = get_settings()
    return RabbitMQNotifier(
        host=settings.rabbitmq_host,
        port=settings.rabbitmq_port,
        queue=settings.notifications_queue,
        enabled=settings.notifications_enabled,
    )


def group_removed_by_organization(removed: Iterable[RemovedMeeting]) -> Dict[int, List[RemovedMeeting]]:
    """Bucket removed meetings per owning organization, keeping their order."""

    grouped: Dict[int, List[RemovedMeeting]] = defaultdict(list)
    for meeting in removed:
        grouped[meeting.organization_id].append(meeting)
    return dict(grouped)


def _meeting_details(title: str, description: str, start, end, room_name: Optional[str], advisor: Optional[str]) -> str:
    lines = [
        f"Title: {title}",
        f"Description: {description}",
        f"Start Date: {format_local(start)}",
        f"End Date: {format_local(end)}",
        f"Room: {room_name or 'Virtual'}",
    ]
    if advisor is not None:
        lines.append(f"Advisor: {advisor}")
    return "\n".join(lines)


def meeting_created(meeting, room_name: Optional[str] = None) -> NotificationEvent:
    message = (
        "You are receiving this email because you are a member of {ORG_NAME}.\n"
        "This email is to let you know of an upcoming meeting. The details of which are below.\n"
        + _meeting_details(meeting.title, meeting.description, meeting.start_time, meeting.end_time, room_name, meeting.advisor)
        + FOOTER
    )
    return NotificationEvent(
        kind=NotificationKind.MEETING_CREATED,
        subject="{ORG_NAME} scheduled a meeting",
        message=message,
        payload={"meeting_id": meeting.id, "room_id": meeting.room_id},
    )


def meeting_updated(meeting, room_name: Optional[str] = None) -> NotificationEvent:
    message = (
        "You are receiving this email because you are a member of {ORG_NAME}.\n"
        "This email is to let you know of an updated meeting. The details of which are below.\n"
        + _meeting_details(meeting.title, meeting.description, meeting.start_time, meeting.end_time, room_name, meeting.advisor or "None")
        + FOOTER
    )
    return NotificationEvent(
        kind=NotificationKind.MEETING_UPDATED,
        subject="{ORG_NAME} updated a meeting",
        message=message,
        payload={"meeting_id": meeting.id, "room_id": meeting.room_id},
    )


def meeting_canceled(removed: RemovedMeeting) -> NotificationEvent:
    message = (
        "You are receiving this email because you are a member of {ORG_NAME}.\n"
        f"The meeting {removed.title} scheduled for {format_local(removed.start_time)} has been canceled."
        + FOOTER
    )
    return NotificationEvent(
        kind=NotificationKind.MEETING_CANCELED,
        subject="{ORG_NAME} canceled a meeting",
        message=message,
        payload={"meeting_id": removed.id, "meeting_title": removed.title},
    )


def meeting_evicted(removed: RemovedMeeting) -> NotificationEvent:
    message = (
        f"Your meeting, {removed.title}, has been cancelled by admins due to a conflict with another meeting.\n\n"
        "We deeply apologize for the inconvenience, and we hope you are able to schedule it to a different room."
        + FOOTER
    )
    return NotificationEvent(
        kind=NotificationKind.MEETING_EVICTED,
        subject="Meeting removed for {ORG_NAME}",
        message=message,
        payload={"meeting_id": removed.id, "meeting_title": removed.title, "room_id": removed.room_id},
    )


ROOM_DELETED_REASON = "This is because the room(s) they were originally scheduled for have been taken out of service."
ROOM_DAYS_REASON = (
    "This is because the room they were initially held in is no longer available "
    "on the days that these meetings were scheduled."
)


def room_meetings_removed(removed: List[RemovedMeeting], reason: str) -> NotificationEvent:
    listing = "\n".join(f"{meeting.title} at {format_local(meeting.start_time)}" for meeting in removed)
    message = (
        "This email is to let you know that the following meetings have been removed from {ORG_NAME}:\n"
        f"{listing}\n\n{reason}\n"
        "We are deeply sorry for the inconvenience, and we hope you are able to reschedule "
        "the meetings in a different room."
        + FOOTER
    )
    return NotificationEvent(
        kind=NotificationKind.ROOM_MEETINGS_REMOVED,
        subject="{ORG_NAME}: Meetings Removed",
        message=message,
        payload={"meeting_ids": [meeting.id for meeting in removed], "meeting_titles": [m.title for m in removed]},
    )
