from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.db import get_db
from mindwell.models import User
from mindwell.schemas import NotificationOut
from mindwell.services import notifications
from mindwell.services.auth_service import get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationOut])
async def list_my_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await notifications.list_for_user(db, current_user.id, unread_only=unread_only)


@router.post("/{notification_id}/read", status_code=204)
async def mark_notification_read(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not await notifications.mark_read(db, current_user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notificação não encontrada")
