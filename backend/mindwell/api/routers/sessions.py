from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.api.errors import unwrap
from mindwell.config import DEFAULT_SESSION_DURATION
from mindwell.db import get_db
from mindwell.models import Session, User
from mindwell.schemas import (
    CancelRequest, ConfirmRequest, PaginatedResult, RescheduleRequest,
    SessionCreate, SessionOut, SessionUpdate,
)
from mindwell.services import notifications, pagination
from mindwell.services.auth_service import get_current_user
from mindwell.services.session_store import SessionFilters, SessionStore
from mindwell.timeutil import as_utc, utcnow

router = APIRouter(prefix="/sessions", tags=["sessions"])

DEFAULT_CANCEL_REASON = "Cancelado pelo usuário"


async def get_participant_session(store: SessionStore, session_id: int, user: User) -> Session:
    """Load a session the caller takes part in (as patient or therapist)."""
    session = unwrap(await store.get(session_id))
    if user.id not in (session.user_id, session.therapist_id):
        raise HTTPException(status_code=403, detail="Acesso não autorizado")
    return session


async def ensure_slot_free(
    store: SessionStore, therapist_id: int, start: datetime, duration: int, exclude_id: Optional[int] = None
) -> None:
    conflicts = unwrap(await store.find_conflicts(therapist_id, start, duration, exclude_id=exclude_id))
    if conflicts:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Conflito de horários. Este horário já está agendado.",
        )


@router.get("", response_model=PaginatedResult[SessionOut])
async def list_my_sessions(
    request: Request,
    status_filter: Optional[str] = Query(None, alias="status"),
    from_date: Optional[datetime] = Query(None, alias="fromDate"),
    to_date: Optional[datetime] = Query(None, alias="toDate"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Paginated sessions of the logged-in patient, newest first by default."""
    params = pagination.sanitize(request.query_params)
    filters = SessionFilters(status=status_filter, from_date=from_date, to_date=to_date)
    store = SessionStore(db)

    total = unwrap(await store.count_by_user(current_user.id, filters))
    rows = unwrap(await store.list_by_user(current_user.id, filters, params))
    return pagination.paginate([SessionOut.model_validate(row) for row in rows], total, params)


@router.get("/therapist/{therapist_id}", response_model=List[SessionOut])
async def list_therapist_sessions(
    therapist_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role != "therapist" or current_user.id != therapist_id:
        raise HTTPException(status_code=403, detail="Sem permissão para acessar estas sessões")
    return unwrap(await SessionStore(db).list_by_therapist(therapist_id))


@router.get("/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await get_participant_session(SessionStore(db), session_id, current_user)


@router.post("", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def book_session(
    req: SessionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Book a session with a therapist for the logged-in patient."""
    therapist = await db.get(User, req.therapist_id)
    if therapist is None or therapist.role != "therapist":
        raise HTTPException(status_code=404, detail="Terapeuta não encontrado")

    store = SessionStore(db)
    data = req.model_dump(exclude_none=True)
    data.update(user_id=current_user.id, therapist_name=therapist.full_name)
    duration = data.get("duration") or DEFAULT_SESSION_DURATION
    await ensure_slot_free(store, therapist.id, req.scheduled_for, duration)

    session = unwrap(await store.create(data, actor="user"))
    await notifications.notify_booked(db, session)
    return session


@router.put("/{session_id}", response_model=SessionOut)
async def update_session(
    session_id: int,
    payload: SessionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store = SessionStore(db)
    session = unwrap(await store.get(session_id))
    if session.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized to update this session")

    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nada para atualizar")
    return unwrap(await store.update_fields(session_id, changes))


@router.post("/{session_id}/cancel", response_model=SessionOut)
async def cancel_session(
    session_id: int,
    req: Optional[CancelRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    req = req or CancelRequest()
    store = SessionStore(db)
    session = await get_participant_session(store, session_id, current_user)
    reason = req.reason or DEFAULT_CANCEL_REASON
    actor = "user" if session.user_id == current_user.id else "therapist"

    updated = unwrap(await store.cancel(session_id, reason, actor=actor, expected_status=req.expected_status))
    await notifications.notify_canceled(db, updated, current_user.id, reason)
    return updated


@router.post("/{session_id}/confirm", response_model=SessionOut)
async def confirm_session(
    session_id: int,
    req: Optional[ConfirmRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    req = req or ConfirmRequest()
    store = SessionStore(db)
    session = await get_participant_session(store, session_id, current_user)
    confirmed_by = "user" if session.user_id == current_user.id else "therapist"

    updated = unwrap(await store.confirm(session_id, confirmed_by, expected_status=req.expected_status))
    await notifications.notify_confirmed(db, updated, current_user.id)
    return updated


@router.post("/{session_id}/reschedule", response_model=SessionOut)
async def reschedule_session(
    session_id: int,
    req: RescheduleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Move a session to a new date; answers with the successor session."""
    if as_utc(req.new_date) <= utcnow():
        raise HTTPException(status_code=400, detail="A nova data precisa ser no futuro")

    store = SessionStore(db)
    session = await get_participant_session(store, session_id, current_user)
    if session.is_terminal:
        raise HTTPException(
            status_code=400,
            detail=f"Esta sessão já está {session.status.lower()}, não pode ser reagendada",
        )
    await ensure_slot_free(store, session.therapist_id, req.new_date, session.duration, exclude_id=session.id)

    actor = "user" if session.user_id == current_user.id else "therapist"
    successor = unwrap(
        await store.reschedule(session_id, req.new_date, actor=actor, expected_status=req.expected_status)
    )
    await notifications.notify_rescheduled(db, successor, current_user.id)
    return successor
