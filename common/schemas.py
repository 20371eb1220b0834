"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import MembershipRole, OrganizationState, RoleEnum
from .timeutils import Weekday, normalize_days


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.REGULAR


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[RoleEnum] = None
    password: Optional[str] = Field(None, min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=150)
    url: str = Field(..., min_length=2, max_length=150, pattern=r"^[a-z0-9-]+$")


class OrganizationRead(BaseModel):
    id: int
    name: str
    url: str
    state: OrganizationState

    model_config = {"from_attributes": True}


class OrganizationStateUpdate(BaseModel):
    state: OrganizationState


class MembershipRead(BaseModel):
    id: int
    user_id: int
    organization_id: int
    role: MembershipRole

    model_config = {"from_attributes": True}


def _normalize_day_names(value):
    # anything other than a list of names is left for pydantic to reject
    if isinstance(value, (list, tuple, set)) and all(isinstance(day, str) for day in value):
        return normalize_days(value)
    return value


class RoomBase(BaseModel):
    name: str = Field(..., max_length=100)
    floor: int
    available_days: List[Weekday] = Field(default_factory=lambda: list(Weekday))
    approval_required: bool = False
    comments: str = ""

    @field_validator("available_days", mode="before")
    @classmethod
    def _normalize_days(cls, value):
        return _normalize_day_names(value)


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    floor: Optional[int] = None
    available_days: Optional[List[Weekday]] = None
    approval_required: Optional[bool] = None
    comments: Optional[str] = None

    @field_validator("available_days", mode="before")
    @classmethod
    def _normalize_days(cls, value):
        return _normalize_day_names(value)


class RoomRead(RoomBase):
    id: int

    model_config = {"from_attributes": True}


class RoomSummary(BaseModel):
    id: int
    name: str
    floor: int

    model_config = {"from_attributes": True}


class MeetingBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    room_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    is_public: bool = True
    advisor: Optional[str] = Field(None, max_length=100)

    @field_validator("advisor")
    @classmethod
    def _blank_advisor_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class MeetingCreate(MeetingBase):
    organization_id: int


class MeetingUpdate(MeetingBase):
    """Edits replace time, room and metadata wholesale."""


class MeetingRead(MeetingBase):
    id: int
    organization_id: int
    room: Optional[RoomSummary] = None

    model_config = {"from_attributes": True}


class ForceReserveRequest(BaseModel):
    room_id: int
    organization_id: int
    start_time: datetime
    end_time: datetime
    title: str = "Reserved Meeting"
    description: str = "This meeting was reserved by an admin."


class ForceReserveRead(BaseModel):
    meeting: MeetingRead
    evicted_meeting_ids: List[int]


class AvailabilityRead(BaseModel):
    room_id: int
    available: bool
    reason: str
    detail: str
