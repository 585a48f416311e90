from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Optional, Literal

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    BigInteger, Integer, String, Text, DateTime, Boolean, JSON,
    CheckConstraint, ForeignKey, Index, false
)
from sqlalchemy.sql import func

from mindwell.db import Base
from mindwell.timeutil import utcnow

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

Role = Literal["patient", "therapist"]


class SessionStatus(str, Enum):
    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELED = "Canceled"
    RESCHEDULED = "Rescheduled"


# minutes; bounds how far back conflict detection has to look
MAX_SESSION_DURATION = 480

TERMINAL_STATUSES = frozenset({
    SessionStatus.COMPLETED.value,
    SessionStatus.CANCELED.value,
    SessionStatus.RESCHEDULED.value,
})


class SessionEventType(str, Enum):
    CREATED = "created"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"
    RESCHEDULED = "rescheduled"
    STATUS_CHANGED = "status_changed"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role in ('patient','therapist')", name="ck_users_role"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String, default="patient", nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, default="", nullable=False)
    specialization: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # patients are assigned to one therapist
    therapist_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Session(Base):
    """A therapy appointment between a patient (``user_id``) and a therapist."""

    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint(
            "status in ('Scheduled','Confirmed','Completed','Canceled','Rescheduled')",
            name="ck_sessions_status",
        ),
        CheckConstraint("duration > 0", name="ck_sessions_duration"),
        Index("idx_sessions_user_scheduled", "user_id", "scheduled_for"),
        Index("idx_sessions_therapist_scheduled", "therapist_id", "scheduled_for"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    therapist_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    therapist_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    status: Mapped[str] = mapped_column(String, default=SessionStatus.SCHEDULED.value, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String, default="Video", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    events: Mapped[list["SessionEvent"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", order_by="SessionEvent.id"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SessionEvent(Base):
    """Append-only audit log of session lifecycle transitions."""

    __tablename__ = "session_events"
    __table_args__ = (
        Index("idx_session_events_session", "session_id", "at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # 'user' | 'therapist' | 'system'
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    session: Mapped["Session"] = relationship(back_populates="events")


class DailyStreak(Base):
    __tablename__ = "daily_streaks"
    __table_args__ = (
        CheckConstraint("current_streak >= 0", name="ck_daily_streaks_current"),
        CheckConstraint("longest_streak >= current_streak", name="ck_daily_streaks_longest"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_checkin: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # tags recorded for the current streak day only
    activities: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class TherapistUrgencyStatus(Base):
    __tablename__ = "therapist_urgency_status"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    therapist_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    is_available_for_urgent: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, server_default=false()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    available_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    max_waiting_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_time", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # appointment, reminder, ...
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, server_default=false())
    related_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
