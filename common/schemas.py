"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import BookingStatus, EventType, RoleEnum


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    username: str
    role: RoleEnum


class UserBase(BaseModel):
    full_name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.STUDENT
    student_id: Optional[str] = Field(None, max_length=50)
    department: str = Field("", max_length=100)


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[RoleEnum] = None
    student_id: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = Field(None, min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserStats(BaseModel):
    total: int
    students: int
    faculty: int
    admins: int


class VenueBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(..., max_length=50)
    capacity: int = Field(..., gt=0)
    equipment: List[str] = Field(default_factory=list)
    available: bool = True
    description: Optional[str] = None


class VenueCreate(VenueBase):
    pass


class VenueUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[str] = Field(None, max_length=50)
    capacity: Optional[int] = Field(None, gt=0)
    equipment: Optional[List[str]] = None
    available: Optional[bool] = None
    description: Optional[str] = None


class VenueRead(VenueBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    venue_id: int
    event_name: str = Field(..., min_length=1, max_length=200)
    event_type: EventType = EventType.OTHER
    description: Optional[str] = None
    start_date: date
    start_time: time
    end_time: time
    expected_attendees: int = Field(..., gt=0)
    priority: bool = False


class BookingUpdate(BaseModel):
    venue_id: Optional[int] = None
    event_name: Optional[str] = Field(None, min_length=1, max_length=200)
    event_type: Optional[EventType] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    expected_attendees: Optional[int] = Field(None, gt=0)


class BookingRead(BaseModel):
    id: int
    user_id: int
    venue_id: int
    event_name: str
    event_type: EventType
    description: Optional[str] = None
    start_date: date
    start_time: time
    end_time: time
    expected_attendees: int
    status: BookingStatus
    priority: bool
    rejection_reason: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DecisionRead(BaseModel):
    kind: Literal["clear", "blocked", "bump"]
    conflicts: List[int] = Field(default_factory=list)
    losers: List[int] = Field(default_factory=list)


class SubmissionRead(BaseModel):
    booking: BookingRead
    decision: DecisionRead


class BookingEditRead(BaseModel):
    booking: BookingRead
    conflicts: List[BookingRead]


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OverrideRequest(BaseModel):
    status: BookingStatus
    reason: Optional[str] = Field(None, max_length=500)


class BookingStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    priority: int


class DocumentRead(BaseModel):
    id: int
    booking_id: int
    file_name: str
    file_path: str
    file_size: int
    uploaded_at: datetime

    model_config = {"from_attributes": True}
