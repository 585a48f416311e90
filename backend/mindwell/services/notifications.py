"""In-app notifications for session lifecycle changes.

Rows are the source of truth; when Kafka is configured each notification is
also published so push delivery can pick it up.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import mindwell.kafka as kafka
from mindwell.config import KAFKA_TOPIC_NOTIFICATIONS
from mindwell.models import Notification, Session
from mindwell.timeutil import as_utc

logger = logging.getLogger(__name__)


def format_when(value: datetime) -> str:
    return as_utc(value).strftime("%d/%m/%Y às %H:%M")


async def create_notification(
    db: AsyncSession,
    *,
    user_id: int,
    title: str,
    message: str,
    type: str = "appointment",
    related_id: Optional[int] = None,
) -> Optional[Notification]:
    """Store and publish a notification.

    A failure here must not undo the session change that triggered it, so
    storage errors are logged and ``None`` is returned.
    """
    notification = Notification(
        user_id=user_id, title=title, message=message, type=type, related_id=related_id,
    )
    try:
        db.add(notification)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to store notification", extra={"user_id": user_id, "related_id": related_id})
        return None

    await kafka.publish(
        KAFKA_TOPIC_NOTIFICATIONS,
        user_id,
        {
            "id": notification.id,
            "user_id": user_id,
            "title": title,
            "message": message,
            "type": type,
            "related_id": related_id,
        },
    )
    return notification


async def list_for_user(db: AsyncSession, user_id: int, *, unread_only: bool = False) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
    return list((await db.execute(stmt)).scalars().all())


async def mark_read(db: AsyncSession, user_id: int, notification_id: int) -> bool:
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(read=True)
    )
    await db.commit()
    return result.rowcount == 1


def counterpart_of(session: Session, actor_id: int) -> tuple[int, str]:
    """Who to notify when ``actor_id`` acts on ``session``, and the actor's label."""
    if session.user_id == actor_id:
        return session.therapist_id, "paciente"
    return session.user_id, "terapeuta"


async def notify_booked(db: AsyncSession, session: Session) -> None:
    when = format_when(session.scheduled_for)
    await create_notification(
        db,
        user_id=session.therapist_id,
        title="Nova Consulta Agendada",
        message=f"Consulta agendada com paciente #{session.user_id} para {when}",
        related_id=session.id,
    )


async def notify_canceled(db: AsyncSession, session: Session, actor_id: int, reason: str) -> None:
    recipient, label = counterpart_of(session, actor_id)
    await create_notification(
        db,
        user_id=recipient,
        title="Consulta Cancelada",
        message=(
            f"A consulta agendada para {format_when(session.scheduled_for)} "
            f"foi cancelada pelo {label}. Motivo: {reason}"
        ),
        related_id=session.id,
    )


async def notify_confirmed(db: AsyncSession, session: Session, actor_id: int) -> None:
    recipient, label = counterpart_of(session, actor_id)
    await create_notification(
        db,
        user_id=recipient,
        title="Consulta Confirmada",
        message=f"A consulta de {format_when(session.scheduled_for)} foi confirmada pelo {label}",
        related_id=session.id,
    )


async def notify_rescheduled(db: AsyncSession, successor: Session, actor_id: int) -> None:
    recipient, label = counterpart_of(successor, actor_id)
    await create_notification(
        db,
        user_id=recipient,
        title="Consulta Reagendada",
        message=f"A consulta foi reagendada pelo {label} para {format_when(successor.scheduled_for)}",
        related_id=successor.id,
    )


async def notify_completed(db: AsyncSession, session: Session) -> None:
    await create_notification(
        db,
        user_id=session.user_id,
        title="Sessão Concluída",
        message=f"Sua sessão com {session.therapist_name or 'seu terapeuta'} foi concluída. Não esqueça de avaliá-la!",
        related_id=session.id,
    )
