from contextlib import asynccontextmanager
from typing import List

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from common.config import get_settings
from common.conflicts import force_reserve
from common.database import Base, engine, get_db
from common.dependencies import (
    allow_roles,
    ensure_org_role,
    get_current_active_user,
    get_notifier,
    get_organization_or_404,
)
from common.exceptions import RoomNotFoundError, SchedulingError, room_not_found_handler, scheduling_error_handler
from common.logging_middleware import add_audit_middleware
from common.models import Meeting, Membership, Organization, OrganizationState, RoleEnum, Room, User
from common.notifications import DeferredNotifier, Notifier
from common.rate_limit import ADMIN_LIMIT, BOOKING_LIMIT, READ_LIMIT, apply_rate_limiter, limiter
from common.repositories import MeetingDraft, MeetingRepository, RoomRepository
from common.scheduling import cancel_meeting, reschedule_meeting, schedule_meeting
from common.schemas import ForceReserveRead, ForceReserveRequest, MeetingCreate, MeetingRead, MeetingUpdate
from common.timeutils import start_of_local_day

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Meetings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "meetings")
    fastapi_app.add_exception_handler(SchedulingError, scheduling_error_handler)
    fastapi_app.add_exception_handler(RoomNotFoundError, room_not_found_handler)
    return fastapi_app


app = create_app()


def _ensure_can_schedule(db: Session, user: User, organization: Organization) -> None:
    ensure_org_role(db, user, organization.id)
    if organization.state != OrganizationState.UNLOCKED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organization is not active")


def _ensure_room_exists(db: Session, room_id: int | None) -> None:
    if room_id is not None and db.get(Room, room_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")


def _get_meeting_or_404(db: Session, meeting_id: int) -> Meeting:
    meeting = db.get(Meeting, meeting_id)
    if not meeting:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Meeting not found")
    return meeting


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "meetings"}


@app.post("/meetings", response_model=MeetingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(BOOKING_LIMIT)
def create_meeting(
    request: Request,
    meeting_in: MeetingCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> Meeting:
    organization = get_organization_or_404(db, meeting_in.organization_id)
    _ensure_can_schedule(db, current_user, organization)
    _ensure_room_exists(db, meeting_in.room_id)

    pending = DeferredNotifier()
    meeting = schedule_meeting(
        MeetingRepository(db),
        RoomRepository(db),
        pending,
        MeetingDraft(**meeting_in.model_dump()),
    )
    background_tasks.add_task(pending.flush, notifier)
    return meeting


@app.put("/meetings/{meeting_id}", response_model=MeetingRead)
@limiter.limit(BOOKING_LIMIT)
def edit_meeting(
    request: Request,
    meeting_id: int,
    meeting_update: MeetingUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> Meeting:
    meeting = _get_meeting_or_404(db, meeting_id)
    _ensure_can_schedule(db, current_user, meeting.organization)
    _ensure_room_exists(db, meeting_update.room_id)

    pending = DeferredNotifier()
    meeting = reschedule_meeting(
        MeetingRepository(db),
        RoomRepository(db),
        pending,
        meeting,
        MeetingDraft(organization_id=meeting.organization_id, **meeting_update.model_dump()),
    )
    background_tasks.add_task(pending.flush, notifier)
    return meeting


@app.delete("/meetings/{meeting_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(BOOKING_LIMIT)
def delete_meeting(
    request: Request,
    meeting_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> None:
    meeting = _get_meeting_or_404(db, meeting_id)
    ensure_org_role(db, current_user, meeting.organization_id)

    pending = DeferredNotifier()
    cancel_meeting(MeetingRepository(db), pending, meeting_id)
    background_tasks.add_task(pending.flush, notifier)


@app.post("/meetings/force-reserve", response_model=ForceReserveRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(ADMIN_LIMIT)
def force_reserve_room(
    request: Request,
    reservation: ForceReserveRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ForceReserveRead:
    get_organization_or_404(db, reservation.organization_id)
    _ensure_room_exists(db, reservation.room_id)

    pending = DeferredNotifier()
    outcome = force_reserve(
        MeetingRepository(db),
        pending,
        MeetingDraft(**reservation.model_dump()),
        rooms=RoomRepository(db),
    )
    background_tasks.add_task(pending.flush, notifier)
    return ForceReserveRead(
        meeting=MeetingRead.model_validate(outcome.meeting),
        evicted_meeting_ids=[removed.id for removed in outcome.evicted],
    )


@app.get("/organizations/{organization_id}/meetings", response_model=List[MeetingRead])
@limiter.limit(READ_LIMIT)
def list_organization_meetings(
    request: Request,
    organization_id: int,
    include_past: bool = False,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> List[Meeting]:
    get_organization_or_404(db, organization_id)
    meetings = MeetingRepository(db).list_by_organization(
        organization_id, upcoming_after=None if include_past else start_of_local_day()
    )
    is_member = current_user.role == RoleEnum.ADMIN or (
        db.query(Membership)
        .filter(Membership.organization_id == organization_id, Membership.user_id == current_user.id)
        .first()
        is not None
    )
    if is_member:
        return meetings
    return [meeting for meeting in meetings if meeting.is_public]
