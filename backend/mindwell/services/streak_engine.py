"""Daily streak: consecutive UTC calendar days with a qualifying activity.

The day arithmetic lives in ``advance`` so it can be reasoned about without
a database; ``DailyStreakService`` loads the record, applies it and persists
the result under the row's optimistic version lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from mindwell.models import DailyStreak
from mindwell.services.results import Outcome
from mindwell.timeutil import as_utc, utc_date, utcnow

logger = logging.getLogger(__name__)

RESET_TAG = "reset"


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    longest_streak: int = 0
    last_checkin: Optional[datetime] = None
    activities: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, record: DailyStreak) -> "StreakState":
        return cls(
            current_streak=record.current_streak,
            longest_streak=record.longest_streak,
            last_checkin=as_utc(record.last_checkin),
            activities=tuple(record.activities or ()),
        )

    def apply_to(self, record: DailyStreak) -> None:
        record.current_streak = self.current_streak
        record.longest_streak = self.longest_streak
        record.last_checkin = self.last_checkin
        record.activities = list(self.activities)


def advance(state: StreakState, activity: str, now: datetime) -> StreakState:
    """Return the state after ``activity`` is recorded at ``now``.

    - no previous check-in: the streak starts at 1
    - same UTC day: counters untouched, the tag is added once
    - previous UTC day: streak + 1, the day's tags restart
    - two or more days ago: streak back to 1, the day's tags restart

    ``longest_streak`` is never lowered. A ``last_checkin`` later than ``now``
    (clock skew) counts as the same day.
    """
    now = as_utc(now)
    if state.last_checkin is None:
        return StreakState(
            current_streak=1,
            longest_streak=max(state.longest_streak, 1),
            last_checkin=now,
            activities=(activity,),
        )

    gap = (utc_date(now) - utc_date(state.last_checkin)).days
    if gap <= 0:
        if activity in state.activities:
            return state
        return StreakState(
            current_streak=state.current_streak,
            longest_streak=state.longest_streak,
            last_checkin=state.last_checkin,
            activities=state.activities + (activity,),
        )

    current = state.current_streak + 1 if gap == 1 else 1
    return StreakState(
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_checkin=now,
        activities=(activity,),
    )


def reset_state(state: StreakState, now: datetime) -> StreakState:
    return StreakState(
        current_streak=0,
        longest_streak=state.longest_streak,
        last_checkin=as_utc(now),
        activities=(RESET_TAG,),
    )


class DailyStreakService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _select(self, user_id: int) -> Optional[DailyStreak]:
        res = await self._db.execute(select(DailyStreak).where(DailyStreak.user_id == user_id))
        return res.scalar_one_or_none()

    async def get(self, user_id: int) -> Outcome[DailyStreak]:
        try:
            streak = await self._select(user_id)
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Failed to load streak", extra={"user_id": user_id})
            return Outcome.storage_error(exc)
        if streak is None:
            return Outcome.not_found(f"No streak for user {user_id}")
        return Outcome.success(streak)

    async def get_or_create(self, user_id: int) -> Outcome[DailyStreak]:
        """Return the user's record, inserting a zeroed one when absent."""
        try:
            streak = await self._select(user_id)
            if streak is not None:
                return Outcome.success(streak)
            streak = DailyStreak(user_id=user_id, current_streak=0, longest_streak=0, activities=[])
            self._db.add(streak)
            try:
                await self._db.commit()
            except IntegrityError:
                # another request created it first
                await self._db.rollback()
                streak = await self._select(user_id)
                if streak is None:
                    raise
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Failed to create streak", extra={"user_id": user_id})
            return Outcome.storage_error(exc)
        return Outcome.success(streak)

    async def _write(self, user_id: int, change, operation: str) -> Outcome[DailyStreak]:
        loaded = await self.get_or_create(user_id)
        if not loaded.ok:
            return loaded
        streak = loaded.value
        before = StreakState.of(streak)
        after = change(before)
        try:
            after.apply_to(streak)
            await self._db.commit()
        except StaleDataError:
            await self._db.rollback()
            logger.warning("Concurrent streak update", extra={"user_id": user_id})
            return Outcome.conflict(f"Streak of user {user_id} changed concurrently")
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Failed to %s streak", operation, extra={"user_id": user_id})
            return Outcome.storage_error(exc)

        logger.info(
            "Streak %s for user %s: %s -> %s",
            operation, user_id, before.current_streak, after.current_streak,
            extra={"user_id": user_id},
        )
        return Outcome.success(streak)

    async def record_activity(self, user_id: int, activity: str, now: Optional[datetime] = None) -> Outcome[DailyStreak]:
        moment = now or utcnow()
        return await self._write(user_id, lambda state: advance(state, activity, moment), "update")

    async def reset(self, user_id: int, now: Optional[datetime] = None) -> Outcome[DailyStreak]:
        moment = now or utcnow()
        return await self._write(user_id, lambda state: reset_state(state, moment), "reset")
