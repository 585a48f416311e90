"""Therapy session storage and lifecycle transitions.

Lifecycle::

    Scheduled -> Confirmed -> Completed
    Scheduled | Confirmed -> Canceled
    Scheduled | Confirmed -> Rescheduled   (a successor session is created)

Completed, Canceled and Rescheduled are terminal. Every transition is a
compare-and-swap on the status column, so two requests racing on the same
session cannot both win: the loser gets a ``conflict`` outcome. Each
transition also appends a ``SessionEvent`` row; the free-text annotations
added to ``notes`` are only the human-readable trail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.config import (
    AUTO_CONFIRM_ON_RESCHEDULE,
    DEFAULT_SESSION_DURATION,
    DEFAULT_SESSION_TYPE,
)
from mindwell.models import (
    Session,
    SessionEvent,
    SessionEventType,
    MAX_SESSION_DURATION,
    SessionStatus,
    TERMINAL_STATUSES,
)
from mindwell.schemas import PaginationParams
from mindwell.services import pagination
from mindwell.services.results import Outcome
from mindwell.timeutil import as_utc, utc_day_bounds

logger = logging.getLogger(__name__)

ACTOR_LABELS = {"user": "paciente", "therapist": "terapeuta"}

UPDATABLE_FIELDS = frozenset({"notes", "type", "duration", "therapist_name"})

# statuses a therapist may set directly; Rescheduled only comes from reschedule()
# and nothing moves back to Scheduled
DIRECT_STATUSES = frozenset({
    SessionStatus.CONFIRMED.value,
    SessionStatus.COMPLETED.value,
    SessionStatus.CANCELED.value,
})

SORT_COLUMNS = {
    "scheduledFor": Session.scheduled_for,
    "scheduled_for": Session.scheduled_for,
    "createdAt": Session.created_at,
    "created_at": Session.created_at,
    "status": Session.status,
    "id": Session.id,
}


@dataclass
class SessionFilters:
    status: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


def append_note(notes: Optional[str], annotation: str) -> str:
    return f"{notes} | {annotation}" if notes else annotation


def check_duration(duration: int) -> None:
    if not 0 < duration <= MAX_SESSION_DURATION:
        raise ValueError(f"Session duration must be between 1 and {MAX_SESSION_DURATION} minutes")


class SessionStore:
    def __init__(
        self,
        db: AsyncSession,
        *,
        auto_confirm_on_reschedule: bool = AUTO_CONFIRM_ON_RESCHEDULE,
    ) -> None:
        self._db = db
        self.auto_confirm_on_reschedule = auto_confirm_on_reschedule

    async def _storage_failure(self, exc: SQLAlchemyError, operation: str, **context: Any) -> Outcome:
        await self._db.rollback()
        logger.exception("Storage failure in %s", operation, extra=context)
        return Outcome.storage_error(exc)

    # ---- CRUD ----------------------------------------------------------

    async def create(self, data: dict, *, actor: str = "user") -> Outcome[Session]:
        missing = [key for key in ("user_id", "therapist_id", "scheduled_for") if data.get(key) is None]
        if missing:
            raise ValueError(f"Missing required session fields: {', '.join(missing)}")
        status = data.get("status") or SessionStatus.SCHEDULED.value
        if status not in {s.value for s in SessionStatus}:
            raise ValueError(f"Unknown session status: {status}")
        duration = data.get("duration") or DEFAULT_SESSION_DURATION
        check_duration(duration)

        session = Session(
            user_id=data["user_id"],
            therapist_id=data["therapist_id"],
            therapist_name=data.get("therapist_name"),
            scheduled_for=as_utc(data["scheduled_for"]),
            duration=duration,
            status=status,
            notes=data.get("notes"),
            type=data.get("type") or DEFAULT_SESSION_TYPE,
        )
        try:
            self._db.add(session)
            await self._db.flush()
            self._db.add(SessionEvent(
                session_id=session.id,
                type=SessionEventType.CREATED.value,
                actor=actor,
                payload={"status": status, "scheduled_for": session.scheduled_for.isoformat()},
            ))
            await self._db.commit()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "create", therapist_id=data["therapist_id"])
        logger.info("Session created", extra={"session_id": session.id, "status": status})
        return Outcome.success(session)

    async def get(self, session_id: int) -> Outcome[Session]:
        try:
            session = await self._db.get(Session, session_id)
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "get", session_id=session_id)
        if session is None:
            return Outcome.not_found(f"Session {session_id} not found")
        return Outcome.success(session)

    def _user_conditions(self, user_id: int, filters: Optional[SessionFilters]) -> list:
        conditions = [Session.user_id == user_id]
        if filters is None:
            return conditions
        if filters.status:
            conditions.append(Session.status == filters.status)
        if filters.from_date:
            conditions.append(Session.scheduled_for >= as_utc(filters.from_date))
        if filters.to_date:
            conditions.append(Session.scheduled_for <= as_utc(filters.to_date))
        return conditions

    async def list_by_user(
        self,
        user_id: int,
        filters: Optional[SessionFilters] = None,
        params: Optional[PaginationParams] = None,
    ) -> Outcome[list[Session]]:
        params = params or PaginationParams()
        if params.order_by is None:
            column, descending = Session.scheduled_for, True
        else:
            column = SORT_COLUMNS.get(params.order_by, Session.scheduled_for)
            descending = params.order == "desc"

        stmt = (
            select(Session)
            .where(and_(*self._user_conditions(user_id, filters)))
            .order_by(column.desc() if descending else column.asc(), Session.id.desc())
            .offset(pagination.offset(params))
            .limit(params.limit)
        )
        try:
            rows = (await self._db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "list_by_user", user_id=user_id)
        return Outcome.success(list(rows))

    async def count_by_user(self, user_id: int, filters: Optional[SessionFilters] = None) -> Outcome[int]:
        stmt = select(func.count(Session.id)).where(and_(*self._user_conditions(user_id, filters)))
        try:
            total = (await self._db.execute(stmt)).scalar_one()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "count_by_user", user_id=user_id)
        return Outcome.success(int(total or 0))

    async def list_by_therapist(self, therapist_id: int) -> Outcome[list[Session]]:
        stmt = (
            select(Session)
            .where(Session.therapist_id == therapist_id)
            .order_by(Session.scheduled_for.asc(), Session.id.asc())
        )
        try:
            rows = (await self._db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "list_by_therapist", therapist_id=therapist_id)
        return Outcome.success(list(rows))

    async def list_by_therapist_and_date(self, therapist_id: int, day: datetime) -> Outcome[list[Session]]:
        """Sessions whose start falls inside the UTC calendar day of ``day``."""
        start, end = utc_day_bounds(day)
        stmt = (
            select(Session)
            .where(
                Session.therapist_id == therapist_id,
                Session.scheduled_for >= start,
                Session.scheduled_for <= end,
            )
            .order_by(Session.scheduled_for.asc(), Session.id.asc())
        )
        try:
            rows = (await self._db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "list_by_therapist_and_date", therapist_id=therapist_id)
        return Outcome.success(list(rows))

    async def update_fields(self, session_id: int, fields: dict) -> Outcome[Session]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable here: {', '.join(sorted(unknown))}")
        if fields.get("duration") is not None:
            check_duration(fields["duration"])
        try:
            session = await self._db.get(Session, session_id)
            if session is None:
                return Outcome.not_found(f"Session {session_id} not found")
            for key, value in fields.items():
                setattr(session, key, value)
            await self._db.commit()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "update_fields", session_id=session_id)
        return Outcome.success(session)

    async def find_conflicts(
        self,
        therapist_id: int,
        start: datetime,
        duration: int,
        *,
        exclude_id: Optional[int] = None,
    ) -> Outcome[list[Session]]:
        """Live sessions of the therapist whose time span overlaps the given one."""
        start = as_utc(start)
        end = start + timedelta(minutes=duration)
        stmt = select(Session).where(
            Session.therapist_id == therapist_id,
            Session.status.not_in(sorted(TERMINAL_STATUSES)),
            Session.scheduled_for > start - timedelta(minutes=MAX_SESSION_DURATION),
            Session.scheduled_for < end,
        )
        if exclude_id is not None:
            stmt = stmt.where(Session.id != exclude_id)
        try:
            candidates = (await self._db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "find_conflicts", therapist_id=therapist_id)

        overlapping = []
        for other in candidates:
            other_start = as_utc(other.scheduled_for)
            other_end = other_start + timedelta(minutes=other.duration)
            if other_start < end and start < other_end:
                overlapping.append(other)
        return Outcome.success(overlapping)

    async def events(self, session_id: int) -> Outcome[list[SessionEvent]]:
        stmt = (
            select(SessionEvent)
            .where(SessionEvent.session_id == session_id)
            .order_by(SessionEvent.id.asc())
        )
        try:
            rows = (await self._db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "events", session_id=session_id)
        return Outcome.success(list(rows))

    # ---- lifecycle -----------------------------------------------------

    async def _load_live(self, session_id: int, expected_status: Optional[str]) -> Outcome[Session]:
        session = await self._db.get(Session, session_id)
        if session is None:
            return Outcome.not_found(f"Session {session_id} not found")
        if session.status in TERMINAL_STATUSES:
            return Outcome.invalid_state(f"Session {session_id} is already {session.status}")
        if expected_status is not None and session.status != expected_status:
            return Outcome.conflict(
                f"Session {session_id} is {session.status}, expected {expected_status}"
            )
        return Outcome.success(session)

    async def _swap_status(self, session: Session, current: str, values: dict) -> bool:
        result = await self._db.execute(
            update(Session)
            .where(Session.id == session.id, Session.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _transition(
        self,
        session_id: int,
        *,
        target: str,
        event_type: SessionEventType,
        actor: str,
        expected_status: Optional[str],
        annotation: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> Outcome[Session]:
        try:
            loaded = await self._load_live(session_id, expected_status)
            if not loaded.ok:
                return loaded
            session = loaded.value
            current = session.status

            values: dict[str, Any] = {"status": target}
            if annotation:
                values["notes"] = append_note(session.notes, annotation)
            if not await self._swap_status(session, current, values):
                await self._db.rollback()
                return Outcome.conflict(f"Session {session_id} changed concurrently")

            self._db.add(SessionEvent(
                session_id=session_id,
                type=event_type.value,
                actor=actor,
                payload={"from": current, "to": target, **(payload or {})},
            ))
            await self._db.commit()
            await self._db.refresh(session)
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, event_type.value, session_id=session_id)

        logger.info(
            "Session %s: %s -> %s", session_id, current, target,
            extra={"session_id": session_id, "actor": actor},
        )
        return Outcome.success(session)

    async def confirm(
        self,
        session_id: int,
        confirmed_by: str,
        *,
        expected_status: Optional[str] = None,
    ) -> Outcome[Session]:
        if confirmed_by not in ACTOR_LABELS:
            raise ValueError(f"confirmed_by must be 'user' or 'therapist', got {confirmed_by!r}")
        return await self._transition(
            session_id,
            target=SessionStatus.CONFIRMED.value,
            event_type=SessionEventType.CONFIRMED,
            actor=confirmed_by,
            expected_status=expected_status,
            annotation=f"Confirmada por: {ACTOR_LABELS[confirmed_by]}",
        )

    async def cancel(
        self,
        session_id: int,
        reason: str,
        *,
        actor: str = "user",
        expected_status: Optional[str] = None,
    ) -> Outcome[Session]:
        return await self._transition(
            session_id,
            target=SessionStatus.CANCELED.value,
            event_type=SessionEventType.CANCELED,
            actor=actor,
            expected_status=expected_status,
            annotation=f"Cancelamento: {reason}",
            payload={"reason": reason},
        )

    async def update_status(
        self,
        session_id: int,
        status: str,
        *,
        actor: str = "therapist",
        expected_status: Optional[str] = None,
    ) -> Outcome[Session]:
        if status not in DIRECT_STATUSES:
            raise ValueError(f"Status {status!r} cannot be set directly")
        return await self._transition(
            session_id,
            target=status,
            event_type=SessionEventType.STATUS_CHANGED,
            actor=actor,
            expected_status=expected_status,
        )

    async def reschedule(
        self,
        session_id: int,
        new_date: datetime,
        *,
        actor: str = "user",
        expected_status: Optional[str] = None,
    ) -> Outcome[Session]:
        """Close the session as Rescheduled and book its successor.

        Both writes commit together. Returns the successor.
        """
        new_date = as_utc(new_date)
        successor_status = (
            SessionStatus.CONFIRMED.value if self.auto_confirm_on_reschedule else SessionStatus.SCHEDULED.value
        )
        try:
            loaded = await self._load_live(session_id, expected_status)
            if not loaded.ok:
                return loaded
            original = loaded.value
            current = original.status

            if not await self._swap_status(original, current, {"status": SessionStatus.RESCHEDULED.value}):
                await self._db.rollback()
                return Outcome.conflict(f"Session {session_id} changed concurrently")

            successor = Session(
                user_id=original.user_id,
                therapist_id=original.therapist_id,
                therapist_name=original.therapist_name,
                scheduled_for=new_date,
                duration=original.duration,
                status=successor_status,
                notes=append_note(original.notes, f"Reagendada da sessão #{original.id}"),
                type=original.type,
            )
            self._db.add(successor)
            await self._db.flush()

            self._db.add_all([
                SessionEvent(
                    session_id=original.id,
                    type=SessionEventType.RESCHEDULED.value,
                    actor=actor,
                    payload={
                        "from": current,
                        "to": SessionStatus.RESCHEDULED.value,
                        "successor_id": successor.id,
                        "new_date": new_date.isoformat(),
                    },
                ),
                SessionEvent(
                    session_id=successor.id,
                    type=SessionEventType.CREATED.value,
                    actor=actor,
                    payload={"status": successor_status, "rescheduled_from": original.id},
                ),
            ])
            await self._db.commit()
            await self._db.refresh(original)
        except SQLAlchemyError as exc:
            return await self._storage_failure(exc, "reschedule", session_id=session_id)

        logger.info(
            "Session %s rescheduled as %s", session_id, successor.id,
            extra={"session_id": session_id, "actor": actor},
        )
        return Outcome.success(successor)
