"""Therapist availability for emergency (urgent) calls.

A therapist is matchable when ``is_available_for_urgent`` is set and
``available_until`` is either empty or still in the future. Expiry is checked
on every read; nothing sweeps stale flags, so no read path may trust the flag
alone.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.models import TherapistUrgencyStatus, User
from mindwell.services.results import Outcome
from mindwell.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

UPSERT_FIELDS = ("is_available_for_urgent", "available_until", "max_waiting_time")


def default_status(therapist_id: int) -> TherapistUrgencyStatus:
    """Unsaved stand-in for a therapist that never set a status."""
    return TherapistUrgencyStatus(
        therapist_id=therapist_id,
        is_available_for_urgent=False,
        last_updated=None,
        available_until=None,
        max_waiting_time=None,
    )


def is_matchable(status: TherapistUrgencyStatus, now: Optional[datetime] = None) -> bool:
    if not status.is_available_for_urgent:
        return False
    if status.available_until is None:
        return True
    return as_utc(status.available_until) > as_utc(now or utcnow())


class UrgencyRegistry:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _select(self, therapist_id: int) -> Optional[TherapistUrgencyStatus]:
        res = await self._db.execute(
            select(TherapistUrgencyStatus).where(TherapistUrgencyStatus.therapist_id == therapist_id)
        )
        return res.scalar_one_or_none()

    async def get_status(self, therapist_id: int) -> Outcome[TherapistUrgencyStatus]:
        """Stored status, or the default one when the therapist has none yet."""
        try:
            status = await self._select(therapist_id)
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Failed to load urgency status", extra={"therapist_id": therapist_id})
            return Outcome.storage_error(exc)
        return Outcome.success(status if status is not None else default_status(therapist_id))

    async def upsert_status(self, therapist_id: int, changes: dict) -> Outcome[TherapistUrgencyStatus]:
        """Create or merge. Keys missing from ``changes`` keep their stored value."""
        unknown = set(changes) - set(UPSERT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown urgency fields: {', '.join(sorted(unknown))}")
        if "available_until" in changes:
            changes = {**changes, "available_until": as_utc(changes["available_until"])}
        if changes.get("is_available_for_urgent") is None:
            # the column is NOT NULL; an explicit null means "leave as is"
            changes = {k: v for k, v in changes.items() if k != "is_available_for_urgent"}

        try:
            status = await self._select(therapist_id)
            if status is None:
                status = TherapistUrgencyStatus(therapist_id=therapist_id, is_available_for_urgent=False)
                self._db.add(status)
            for key, value in changes.items():
                setattr(status, key, value)
            status.last_updated = utcnow()
            try:
                await self._db.commit()
            except IntegrityError:
                # lost the insert race; merge into the row the other request created
                await self._db.rollback()
                status = await self._select(therapist_id)
                if status is None:
                    raise
                for key, value in changes.items():
                    setattr(status, key, value)
                status.last_updated = utcnow()
                await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Failed to update urgency status", extra={"therapist_id": therapist_id})
            return Outcome.storage_error(exc)

        logger.info(
            "Urgency status updated",
            extra={
                "therapist_id": therapist_id,
                "available": status.is_available_for_urgent,
            },
        )
        return Outcome.success(status)

    async def list_matchable_ids(self, now: Optional[datetime] = None) -> Outcome[list[int]]:
        moment = as_utc(now or utcnow())
        stmt = (
            select(TherapistUrgencyStatus.therapist_id)
            .where(
                TherapistUrgencyStatus.is_available_for_urgent.is_(True),
                or_(
                    TherapistUrgencyStatus.available_until.is_(None),
                    TherapistUrgencyStatus.available_until > moment,
                ),
            )
            .order_by(TherapistUrgencyStatus.therapist_id)
        )
        try:
            ids = (await self._db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            # emergency matching degrades to "nobody available"; make it loud
            logger.exception("Emergency matching unavailable: urgency lookup failed")
            return Outcome.storage_error(exc)
        return Outcome.success(list(ids))

    async def list_matchable_therapists(
        self, now: Optional[datetime] = None
    ) -> Outcome[list[tuple[User, TherapistUrgencyStatus]]]:
        """Matchable therapists with their status rows, ordered by id."""
        moment = as_utc(now or utcnow())
        stmt = (
            select(User, TherapistUrgencyStatus)
            .join(TherapistUrgencyStatus, TherapistUrgencyStatus.therapist_id == User.id)
            .where(
                User.role == "therapist",
                TherapistUrgencyStatus.is_available_for_urgent.is_(True),
                or_(
                    TherapistUrgencyStatus.available_until.is_(None),
                    TherapistUrgencyStatus.available_until > moment,
                ),
            )
            .order_by(User.id)
        )
        try:
            rows = (await self._db.execute(stmt)).all()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Emergency matching unavailable: therapist lookup failed")
            return Outcome.storage_error(exc)
        return Outcome.success([(user, status) for user, status in rows])
