from __future__ import annotations
from datetime import date, datetime, time, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.api.errors import unwrap
from mindwell.db import get_db
from mindwell.models import Session, SessionStatus, TherapistUrgencyStatus, User
from mindwell.schemas import (
    AgendaOut, SessionEventOut, SessionNotesUpdate, SessionOut, SessionStatusUpdate,
    UrgencyStatusOut, UrgencyStatusUpdate, UserPublic,
)
from mindwell.services import notifications
from mindwell.services.auth_service import require_therapist
from mindwell.services.session_store import SessionStore
from mindwell.services.urgency_registry import UrgencyRegistry, is_matchable
from mindwell.timeutil import utcnow

router = APIRouter(prefix="/therapist", tags=["therapist"])

THERAPIST_CANCEL_REASON = "Cancelado pelo terapeuta"


# 권한 확인 헬퍼 함수
async def check_therapist_patient_access(patient_id: int, therapist_id: int, db: AsyncSession) -> User:
    """(헬퍼 함수) 환자가 이 상담사에게 배정되어 있는지 확인"""
    patient = await db.get(User, patient_id)
    if patient is None or patient.role != "patient":
        raise HTTPException(status_code=404, detail="Paciente não encontrado")
    if patient.therapist_id != therapist_id:
        raise HTTPException(status_code=403, detail="Acesso não autorizado a este paciente")
    return patient


async def get_own_session(store: SessionStore, session_id: int, therapist: User) -> Session:
    session = unwrap(await store.get(session_id))
    if session.therapist_id != therapist.id:
        raise HTTPException(status_code=403, detail="Esta sessão pertence a outro terapeuta")
    return session


def urgency_out(status: TherapistUrgencyStatus) -> UrgencyStatusOut:
    out = UrgencyStatusOut.model_validate(status)
    out.is_matchable = is_matchable(status)
    return out


@router.get("/patients", response_model=List[UserPublic])
async def list_my_patients(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    q = (
        select(User)
        .where(User.therapist_id == current_user.id, User.role == "patient")
        .order_by(User.first_name, User.id)
    )
    return (await db.execute(q)).scalars().all()


@router.get("/patients/{patient_id}", response_model=UserPublic)
async def get_patient(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    return await check_therapist_patient_access(patient_id, current_user.id, db)


@router.get("/sessions", response_model=List[SessionOut])
async def list_my_sessions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    return unwrap(await SessionStore(db).list_by_therapist(current_user.id))


@router.get("/agenda", response_model=AgendaOut)
async def get_agenda(
    day: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    """Sessions starting on one UTC calendar day (today when no date is given)."""
    day = day or utcnow().date()
    moment = datetime.combine(day, time.min, tzinfo=timezone.utc)
    rows = unwrap(await SessionStore(db).list_by_therapist_and_date(current_user.id, moment))
    return AgendaOut(date=day.isoformat(), sessions=[SessionOut.model_validate(row) for row in rows])


@router.get("/sessions/{session_id}", response_model=SessionOut)
async def get_session_detail(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    return await get_own_session(SessionStore(db), session_id, current_user)


@router.get("/sessions/{session_id}/events", response_model=List[SessionEventOut])
async def get_session_events(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    store = SessionStore(db)
    await get_own_session(store, session_id, current_user)
    return unwrap(await store.events(session_id))


@router.post("/sessions/{session_id}/notes", response_model=SessionOut)
async def save_session_notes(
    session_id: int,
    req: SessionNotesUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    store = SessionStore(db)
    await get_own_session(store, session_id, current_user)
    return unwrap(await store.update_fields(session_id, {"notes": req.notes}))


@router.patch("/sessions/{session_id}/status", response_model=SessionOut)
async def update_session_status(
    session_id: int,
    req: SessionStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    store = SessionStore(db)
    await get_own_session(store, session_id, current_user)

    if req.status == SessionStatus.CANCELED.value:
        updated = unwrap(await store.cancel(
            session_id, THERAPIST_CANCEL_REASON, actor="therapist", expected_status=req.expected_status
        ))
        await notifications.notify_canceled(db, updated, current_user.id, THERAPIST_CANCEL_REASON)
        return updated

    updated = unwrap(await store.update_status(
        session_id, req.status, actor="therapist", expected_status=req.expected_status
    ))
    if updated.status == SessionStatus.COMPLETED.value:
        await notifications.notify_completed(db, updated)
    elif updated.status == SessionStatus.CONFIRMED.value:
        await notifications.notify_confirmed(db, updated, current_user.id)
    return updated


# 긴급 상담 가용성
@router.get("/urgency-status", response_model=UrgencyStatusOut)
async def get_urgency_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    return urgency_out(unwrap(await UrgencyRegistry(db).get_status(current_user.id)))


@router.post("/urgency-status", response_model=UrgencyStatusOut)
async def update_urgency_status(
    req: UrgencyStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_therapist),
):
    changes = req.model_dump(exclude_unset=True)
    return urgency_out(unwrap(await UrgencyRegistry(db).upsert_status(current_user.id, changes)))
