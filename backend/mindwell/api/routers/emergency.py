from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.api.errors import unwrap
from mindwell.db import get_db
from mindwell.models import User
from mindwell.schemas import EmergencyTherapist
from mindwell.services.auth_service import get_current_user
from mindwell.services.urgency_registry import UrgencyRegistry

router = APIRouter(prefix="/therapists", tags=["emergency"])


@router.get("/emergency", response_model=List[EmergencyTherapist])
async def list_emergency_therapists(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Therapists accepting urgent calls right now.

    A failed lookup answers 503, never an empty list.
    """
    rows = unwrap(await UrgencyRegistry(db).list_matchable_therapists())
    return [
        EmergencyTherapist(
            id=therapist.id,
            first_name=therapist.first_name,
            last_name=therapist.last_name,
            specialization=therapist.specialization,
            available_until=status.available_until,
            max_waiting_time=status.max_waiting_time,
        )
        for therapist, status in rows
    ]
