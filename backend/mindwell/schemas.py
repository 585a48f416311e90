from __future__ import annotations
from typing import Optional, List, Literal, Generic, TypeVar
from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from enum import Enum

from mindwell.models import MAX_SESSION_DURATION
from mindwell.timeutil import as_utc

T = TypeVar("T")


class CamelModel(BaseModel):
    """JSON keys are camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# 인증
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    role: str = Field("patient", pattern="^(patient|therapist)$")
    specialization: Optional[str] = None
    therapist_id: Optional[int] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserPublic(CamelModel):
    id: int
    email: EmailStr
    role: str
    first_name: str
    last_name: str
    specialization: Optional[str] = None
    therapist_id: Optional[int] = None


# 페이지네이션
class PaginationParams(BaseModel):
    page: int = 1
    limit: int = 10
    order_by: Optional[str] = None
    order: Literal["asc", "desc"] = "asc"


class PaginationMeta(CamelModel):
    total_items: int
    total_pages: int
    current_page: int
    items_per_page: int
    has_next_page: bool
    has_previous_page: bool


class PaginatedResult(CamelModel, Generic[T]):
    data: List[T]
    pagination: PaginationMeta


# 세션
class ConfirmedBy(str, Enum):
    USER = "user"
    THERAPIST = "therapist"


class SessionCreate(CamelModel):
    therapist_id: int
    scheduled_for: datetime
    duration: Optional[int] = Field(None, gt=0, le=MAX_SESSION_DURATION)
    type: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("scheduled_for")
    @classmethod
    def normalise_scheduled_for(cls, value: datetime) -> datetime:
        return as_utc(value)


class SessionUpdate(CamelModel):
    """Non-lifecycle fields a patient may change on a booked session."""

    notes: Optional[str] = None
    type: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0, le=MAX_SESSION_DURATION)


class SessionOut(CamelModel):
    id: int
    user_id: int
    therapist_id: int
    therapist_name: Optional[str] = None
    scheduled_for: datetime
    duration: int
    status: str
    notes: Optional[str] = None
    type: str
    created_at: Optional[datetime] = None


class AgendaOut(CamelModel):
    date: str
    sessions: List[SessionOut]


class SessionEventOut(CamelModel):
    id: int
    session_id: int
    type: str
    actor: Optional[str] = None
    payload: Optional[dict] = None
    at: datetime


class CancelRequest(CamelModel):
    reason: Optional[str] = None
    expected_status: Optional[str] = None


class ConfirmRequest(CamelModel):
    expected_status: Optional[str] = None


class RescheduleRequest(CamelModel):
    new_date: datetime
    expected_status: Optional[str] = None

    @field_validator("new_date")
    @classmethod
    def normalise_new_date(cls, value: datetime) -> datetime:
        return as_utc(value)


class SessionNotesUpdate(CamelModel):
    notes: str


class SessionStatusUpdate(CamelModel):
    status: Literal["Confirmed", "Completed", "Canceled"]
    expected_status: Optional[str] = None


# 연속 기록
class StreakOut(CamelModel):
    user_id: Optional[int] = None
    current_streak: int = 0
    longest_streak: int = 0
    last_checkin: Optional[datetime] = None
    activities: List[str] = []
    updated_at: Optional[datetime] = None


class CheckinRequest(CamelModel):
    activity: str = Field(..., min_length=1, max_length=64)


# 긴급 상담 가용성
class UrgencyStatusOut(CamelModel):
    therapist_id: int
    is_available_for_urgent: bool = False
    last_updated: Optional[datetime] = None
    available_until: Optional[datetime] = None
    max_waiting_time: Optional[int] = None
    is_matchable: bool = False


class UrgencyStatusUpdate(CamelModel):
    """Partial update; fields left out of the request body are not touched."""

    is_available_for_urgent: Optional[bool] = None
    available_until: Optional[datetime] = None
    max_waiting_time: Optional[int] = Field(None, ge=0)

    @field_validator("available_until")
    @classmethod
    def normalise_available_until(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class EmergencyTherapist(CamelModel):
    id: int
    first_name: str
    last_name: str
    specialization: Optional[str] = None
    available_until: Optional[datetime] = None
    max_waiting_time: Optional[int] = None


# 알림
class NotificationOut(CamelModel):
    id: int
    user_id: int
    title: str
    message: str
    type: str
    read: bool
    related_id: Optional[int] = None
    created_at: Optional[datetime] = None
