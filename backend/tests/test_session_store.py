from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from mindwell.models import MAX_SESSION_DURATION, Session, SessionEvent
from mindwell.schemas import PaginationParams
from mindwell.services.results import OutcomeKind
from mindwell.services.session_store import SessionFilters, SessionStore, append_note
from mindwell.timeutil import as_utc

BASE = datetime(2026, 5, 4, 13, 0, tzinfo=timezone.utc)


async def book(store: SessionStore, patient, therapist, when=BASE, **extra) -> Session:
    data = {
        "user_id": patient.id,
        "therapist_id": therapist.id,
        "therapist_name": therapist.full_name,
        "scheduled_for": when,
        **extra,
    }
    outcome = await store.create(data)
    assert outcome.ok
    return outcome.value


def test_append_note():
    assert append_note(None, "Confirmada por: paciente") == "Confirmada por: paciente"
    assert append_note("Primeira sessão", "Cancelamento: viagem") == "Primeira sessão | Cancelamento: viagem"


@pytest.mark.asyncio
async def test_create_applies_defaults(db, patient, therapist):
    session = await book(SessionStore(db), patient, therapist)
    assert session.id is not None
    assert session.status == "Scheduled"
    assert session.duration == 50
    assert session.type == "Video"
    assert session.created_at is not None


@pytest.mark.asyncio
async def test_create_requires_participants(db, patient):
    with pytest.raises(ValueError):
        await SessionStore(db).create({"user_id": patient.id, "scheduled_for": BASE})


@pytest.mark.asyncio
async def test_create_rejects_unknown_status(db, patient, therapist):
    with pytest.raises(ValueError):
        await book(SessionStore(db), patient, therapist, status="Pending")


@pytest.mark.asyncio
async def test_get_missing_session(db):
    assert (await SessionStore(db).get(999)).kind is OutcomeKind.NOT_FOUND


@pytest.mark.asyncio
async def test_reschedule_closes_original_and_books_confirmed_successor(db, patient, therapist):
    store = SessionStore(db)
    original = await book(store, patient, therapist, notes="Primeira sessão")
    new_date = BASE + timedelta(days=2)

    outcome = await store.reschedule(original.id, new_date)

    assert outcome.ok
    successor = outcome.value
    assert successor.id != original.id
    assert successor.status == "Confirmed"
    assert as_utc(successor.scheduled_for) == new_date
    assert successor.notes == f"Primeira sessão | Reagendada da sessão #{original.id}"
    assert (successor.user_id, successor.therapist_id, successor.duration, successor.type) == (
        original.user_id, original.therapist_id, original.duration, original.type,
    )
    assert (await store.get(original.id)).value.status == "Rescheduled"


@pytest.mark.asyncio
async def test_reschedule_without_auto_confirm_keeps_scheduled(db, patient, therapist):
    store = SessionStore(db, auto_confirm_on_reschedule=False)
    original = await book(store, patient, therapist)
    successor = (await store.reschedule(original.id, BASE + timedelta(days=1))).value
    assert successor.status == "Scheduled"


@pytest.mark.asyncio
async def test_reschedule_records_events_on_both_sessions(db, patient, therapist):
    store = SessionStore(db)
    original = await book(store, patient, therapist)
    successor = (await store.reschedule(original.id, BASE + timedelta(days=1), actor="therapist")).value

    original_events = (await store.events(original.id)).value
    assert [e.type for e in original_events] == ["created", "rescheduled"]
    assert original_events[-1].actor == "therapist"
    assert original_events[-1].payload["successor_id"] == successor.id

    successor_events = (await store.events(successor.id)).value
    assert [e.type for e in successor_events] == ["created"]
    assert successor_events[0].payload["rescheduled_from"] == original.id


@pytest.mark.asyncio
async def test_confirm_annotates_notes_and_logs_event(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist)

    confirmed = (await store.confirm(session.id, "therapist")).value

    assert confirmed.status == "Confirmed"
    assert confirmed.notes == "Confirmada por: terapeuta"
    events = (await store.events(session.id)).value
    assert events[-1].type == "confirmed"
    assert events[-1].payload == {"from": "Scheduled", "to": "Confirmed"}


@pytest.mark.asyncio
async def test_confirm_rejects_unknown_actor(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist)
    with pytest.raises(ValueError):
        await store.confirm(session.id, "admin")


@pytest.mark.asyncio
async def test_cancel_records_reason(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist, notes="Trazer diário")

    canceled = (await store.cancel(session.id, "Viagem de trabalho")).value

    assert canceled.status == "Canceled"
    assert canceled.notes == "Trazer diário | Cancelamento: Viagem de trabalho"
    events = (await store.events(session.id)).value
    assert events[-1].payload["reason"] == "Viagem de trabalho"


@pytest.mark.asyncio
async def test_terminal_sessions_cannot_transition(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist)
    await store.cancel(session.id, "Motivo pessoal")

    assert (await store.confirm(session.id, "user")).kind is OutcomeKind.INVALID_STATE
    assert (await store.cancel(session.id, "de novo")).kind is OutcomeKind.INVALID_STATE
    assert (await store.reschedule(session.id, BASE + timedelta(days=1))).kind is OutcomeKind.INVALID_STATE
    assert (await store.update_status(session.id, "Completed")).kind is OutcomeKind.INVALID_STATE


@pytest.mark.asyncio
async def test_expected_status_mismatch_is_a_conflict(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist)
    await store.confirm(session.id, "user")

    outcome = await store.cancel(session.id, "tarde demais", expected_status="Scheduled")

    assert outcome.kind is OutcomeKind.CONFLICT
    assert (await store.get(session.id)).value.status == "Confirmed"


@pytest.mark.asyncio
async def test_lost_race_is_a_conflict(session_factory, patient, therapist):
    async with session_factory() as db:
        session = await book(SessionStore(db), patient, therapist)

    async with session_factory() as first, session_factory() as second:
        slow = SessionStore(first)
        fast = SessionStore(second)
        load = slow._load_live

        async def load_then_lose_race(session_id, expected_status):
            loaded = await load(session_id, expected_status)
            # the other request confirms between our read and our swap
            assert (await fast.confirm(session_id, "therapist")).ok
            return loaded

        slow._load_live = load_then_lose_race
        outcome = await slow.cancel(session.id, "conflito")
        assert outcome.kind is OutcomeKind.CONFLICT

    async with session_factory() as db:
        events = (await db.execute(select(SessionEvent).where(SessionEvent.session_id == session.id))).scalars().all()
        assert [e.type for e in events] == ["created", "confirmed"]


@pytest.mark.asyncio
async def test_update_status_allows_therapist_transitions_only(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist)
    with pytest.raises(ValueError):
        await store.update_status(session.id, "Rescheduled")

    completed = (await store.update_status(session.id, "Completed")).value
    assert completed.status == "Completed"
    events = (await store.events(session.id)).value
    assert events[-1].type == "status_changed"
    assert events[-1].actor == "therapist"


@pytest.mark.asyncio
async def test_update_status_never_moves_back_to_scheduled(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist)
    await store.confirm(session.id, "therapist")

    with pytest.raises(ValueError):
        await store.update_status(session.id, "Scheduled")
    assert (await store.get(session.id)).value.status == "Confirmed"


@pytest.mark.asyncio
async def test_duration_is_capped(db, patient, therapist):
    store = SessionStore(db)
    with pytest.raises(ValueError):
        await book(store, patient, therapist, duration=24 * 60 + 10)
    with pytest.raises(ValueError):
        await book(store, patient, therapist, duration=-5)

    session = await book(store, patient, therapist, duration=MAX_SESSION_DURATION)
    with pytest.raises(ValueError):
        await store.update_fields(session.id, {"duration": MAX_SESSION_DURATION + 1})
    assert (await store.get(session.id)).value.duration == MAX_SESSION_DURATION


@pytest.mark.asyncio
async def test_update_fields(db, patient, therapist):
    store = SessionStore(db)
    session = await book(store, patient, therapist)
    updated = (await store.update_fields(session.id, {"notes": "Sessão focada em sono", "duration": 30})).value
    assert (updated.notes, updated.duration) == ("Sessão focada em sono", 30)

    with pytest.raises(ValueError):
        await store.update_fields(session.id, {"status": "Completed"})
    assert (await store.update_fields(999, {"notes": "x"})).kind is OutcomeKind.NOT_FOUND


@pytest.mark.asyncio
async def test_list_and_count_by_user_with_filters(db, patient, therapist):
    store = SessionStore(db)
    for days in range(5):
        await book(store, patient, therapist, when=BASE + timedelta(days=days))
    newest_first = await store.list_by_user(patient.id)
    assert newest_first.ok
    await store.cancel(newest_first.value[0].id, "motivo")

    assert (await store.count_by_user(patient.id)).value == 5
    assert (await store.count_by_user(patient.id, SessionFilters(status="Canceled"))).value == 1

    window = SessionFilters(from_date=BASE + timedelta(days=1), to_date=BASE + timedelta(days=3))
    assert (await store.count_by_user(patient.id, window)).value == 3


@pytest.mark.asyncio
async def test_list_by_user_orders_newest_first_and_pages(db, patient, therapist):
    store = SessionStore(db)
    for days in range(5):
        await book(store, patient, therapist, when=BASE + timedelta(days=days))

    page = (await store.list_by_user(patient.id, params=PaginationParams(page=2, limit=2))).value
    assert [as_utc(s.scheduled_for) for s in page] == [BASE + timedelta(days=2), BASE + timedelta(days=1)]

    ascending = (await store.list_by_user(
        patient.id, params=PaginationParams(order_by="scheduledFor", order="asc", limit=2)
    )).value
    assert as_utc(ascending[0].scheduled_for) == BASE


@pytest.mark.asyncio
async def test_list_by_therapist_and_date_uses_inclusive_utc_bounds(db, patient, therapist):
    store = SessionStore(db)
    day_start = datetime(2026, 5, 4, tzinfo=timezone.utc)
    await book(store, patient, therapist, when=day_start)
    await book(store, patient, therapist, when=day_start + timedelta(hours=23, minutes=59))
    await book(store, patient, therapist, when=day_start + timedelta(days=1))
    await book(store, patient, therapist, when=day_start - timedelta(minutes=1))

    rows = (await store.list_by_therapist_and_date(therapist.id, BASE)).value
    assert [as_utc(s.scheduled_for) for s in rows] == [day_start, day_start + timedelta(hours=23, minutes=59)]


@pytest.mark.asyncio
async def test_find_conflicts_ignores_terminal_and_touching_sessions(db, patient, therapist):
    store = SessionStore(db)
    live = await book(store, patient, therapist, when=BASE, duration=50)
    canceled = await book(store, patient, therapist, when=BASE + timedelta(hours=2))
    await store.cancel(canceled.id, "motivo")

    overlapping = (await store.find_conflicts(therapist.id, BASE + timedelta(minutes=30), 50)).value
    assert [s.id for s in overlapping] == [live.id]

    assert (await store.find_conflicts(therapist.id, BASE + timedelta(minutes=50), 50)).value == []
    assert (await store.find_conflicts(therapist.id, BASE + timedelta(hours=2), 50)).value == []
    assert (await store.find_conflicts(therapist.id, BASE, 50, exclude_id=live.id)).value == []


@pytest.mark.asyncio
async def test_find_conflicts_sees_longest_sessions(db, patient, therapist):
    store = SessionStore(db)
    start = BASE - timedelta(minutes=MAX_SESSION_DURATION - 1)
    longest = await book(store, patient, therapist, when=start, duration=MAX_SESSION_DURATION)

    overlapping = (await store.find_conflicts(therapist.id, BASE, 30)).value
    assert [s.id for s in overlapping] == [longest.id]
    assert (await store.find_conflicts(therapist.id, BASE + timedelta(minutes=1), 30)).value == []


class BrokenSession:
    async def get(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    async def rollback(self):
        pass


@pytest.mark.asyncio
async def test_storage_failures_are_distinct_from_missing_rows():
    store = SessionStore(BrokenSession())
    assert (await store.get(1)).kind is OutcomeKind.STORAGE_ERROR
    assert (await store.list_by_therapist(1)).kind is OutcomeKind.STORAGE_ERROR
    assert (await store.confirm(1, "user")).kind is OutcomeKind.STORAGE_ERROR
