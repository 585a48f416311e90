from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.api.errors import unwrap
from mindwell.db import get_db
from mindwell.models import User
from mindwell.schemas import CheckinRequest, StreakOut
from mindwell.services.auth_service import get_current_user
from mindwell.services.results import OutcomeKind
from mindwell.services.streak_engine import DailyStreakService

router = APIRouter(prefix="/streaks", tags=["streaks"])


@router.get("", response_model=StreakOut)
async def get_my_streak(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Streak of the logged-in user; users who never checked in get zeros."""
    outcome = await DailyStreakService(db).get(current_user.id)
    if outcome.kind is OutcomeKind.NOT_FOUND:
        return StreakOut(user_id=current_user.id)
    return unwrap(outcome)


@router.post("/checkin", response_model=StreakOut)
async def check_in(
    req: CheckinRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return unwrap(await DailyStreakService(db).record_activity(current_user.id, req.activity))


@router.post("/reset", response_model=StreakOut)
async def reset_streak(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return unwrap(await DailyStreakService(db).reset(current_user.id))
