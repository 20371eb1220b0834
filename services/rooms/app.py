from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from common.availability import validate_meeting
from common.conflicts import apply_available_days, remove_room
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_roles, get_current_active_user, get_notifier
from common.exceptions import RoomNotFoundError, SchedulingError, room_not_found_handler, scheduling_error_handler
from common.logging_middleware import add_audit_middleware
from common.models import RoleEnum, Room, User
from common.notifications import DeferredNotifier, Notifier
from common.rate_limit import ADMIN_LIMIT, READ_LIMIT, apply_rate_limiter, limiter
from common.repositories import MeetingRepository, RoomRepository
from common.schemas import AvailabilityRead, RoomCreate, RoomRead, RoomUpdate
from common.timeutils import Weekday

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Rooms Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "rooms")
    fastapi_app.add_exception_handler(SchedulingError, scheduling_error_handler)
    fastapi_app.add_exception_handler(RoomNotFoundError, room_not_found_handler)
    return fastapi_app


app = create_app()


def _get_room_or_404(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def _ensure_unique_name(db: Session, name: str, room_id: Optional[int] = None) -> None:
    query = db.query(Room).filter(Room.name == name)
    if room_id is not None:
        query = query.filter(Room.id != room_id)
    if query.first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room name already exists")


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "rooms"}


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Room:
    _ensure_unique_name(db, room_in.name)
    data = room_in.model_dump()
    data["available_days"] = [day.value for day in room_in.available_days]
    room = Room(**data)
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


@app.get("/rooms", response_model=List[RoomRead])
@limiter.limit(READ_LIMIT)
def list_rooms(
    request: Request,
    floor: Optional[int] = None,
    day: Optional[Weekday] = None,
    db: Session = Depends(get_db),
) -> List[Room]:
    query = db.query(Room)
    if floor is not None:
        query = query.filter(Room.floor == floor)
    rooms = query.order_by(Room.floor, Room.name).all()
    if day is not None:
        return [room for room in rooms if day.value in (room.available_days or [])]
    return rooms


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit(READ_LIMIT)
def get_room(request: Request, room_id: int, db: Session = Depends(get_db)) -> Room:
    return _get_room_or_404(db, room_id)


@app.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit(ADMIN_LIMIT)
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> Room:
    _get_room_or_404(db, room_id)
    fields = room_update.model_dump(exclude_unset=True, exclude={"available_days"})
    if fields.get("name"):
        _ensure_unique_name(db, fields["name"], room_id)

    pending = DeferredNotifier()
    room, removed = apply_available_days(
        MeetingRepository(db),
        RoomRepository(db),
        pending,
        room_id,
        available_days=room_update.available_days,
        **{key: value for key, value in fields.items() if value is not None},
    )
    background_tasks.add_task(pending.flush, notifier)
    db.refresh(room)
    return room


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(ADMIN_LIMIT)
def delete_room(
    request: Request,
    room_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> None:
    _get_room_or_404(db, room_id)
    pending = DeferredNotifier()
    remove_room(MeetingRepository(db), RoomRepository(db), pending, room_id)
    background_tasks.add_task(pending.flush, notifier)


@app.get("/rooms/{room_id}/availability", response_model=AvailabilityRead)
@limiter.limit("40/minute")
def check_availability(
    request: Request,
    room_id: int,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    organization_id: Optional[int] = None,
    meeting_id: Optional[int] = None,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> AvailabilityRead:
    _get_room_or_404(db, room_id)
    result = validate_meeting(
        MeetingRepository(db),
        RoomRepository(db),
        start_time,
        end_time,
        room_id=room_id,
        meeting_id=meeting_id,
        organization_id=organization_id,
    )
    return AvailabilityRead(room_id=room_id, available=result.ok, reason=result.value, detail=result.message)
