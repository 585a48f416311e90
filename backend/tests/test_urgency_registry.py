from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from mindwell.models import TherapistUrgencyStatus
from mindwell.services.results import OutcomeKind
from mindwell.services.urgency_registry import UrgencyRegistry, default_status, is_matchable

NOW = datetime(2026, 7, 1, 18, 0, tzinfo=timezone.utc)


def test_is_matchable_predicate():
    status = default_status(7)
    assert is_matchable(status, NOW) is False

    status.is_available_for_urgent = True
    assert is_matchable(status, NOW) is True

    status.available_until = NOW + timedelta(minutes=5)
    assert is_matchable(status, NOW) is True

    status.available_until = NOW
    assert is_matchable(status, NOW) is False


@pytest.mark.asyncio
async def test_get_status_defaults_without_writing(db, therapist):
    registry = UrgencyRegistry(db)
    status = (await registry.get_status(therapist.id)).value

    assert status.is_available_for_urgent is False
    assert status.available_until is None
    assert status.max_waiting_time is None
    count = (await db.execute(select(func.count(TherapistUrgencyStatus.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_expired_availability_is_not_matchable(db, therapist):
    registry = UrgencyRegistry(db)
    await registry.upsert_status(
        therapist.id, {"is_available_for_urgent": True, "available_until": NOW - timedelta(hours=1)}
    )

    ids = (await registry.list_matchable_ids(NOW)).value
    assert therapist.id not in ids
    # the stored flag is left as it was
    assert (await registry.get_status(therapist.id)).value.is_available_for_urgent is True


@pytest.mark.asyncio
async def test_open_ended_and_future_availability_are_matchable(db, therapist, user_factory):
    other = await user_factory("dr.costa@example.com", role="therapist", first_name="Paulo", last_name="Costa")
    off_duty = await user_factory("dra.reis@example.com", role="therapist", first_name="Rita", last_name="Reis")
    registry = UrgencyRegistry(db)
    await registry.upsert_status(therapist.id, {"is_available_for_urgent": True})
    await registry.upsert_status(
        other.id, {"is_available_for_urgent": True, "available_until": NOW + timedelta(hours=2)}
    )
    await registry.upsert_status(off_duty.id, {"is_available_for_urgent": False})

    assert (await registry.list_matchable_ids(NOW)).value == sorted([therapist.id, other.id])


@pytest.mark.asyncio
async def test_upsert_merges_and_stamps_last_updated(db, therapist):
    registry = UrgencyRegistry(db)
    first = (await registry.upsert_status(
        therapist.id, {"is_available_for_urgent": True, "max_waiting_time": 15}
    )).value
    first_stamp = first.last_updated

    second = (await registry.upsert_status(therapist.id, {"available_until": NOW})).value

    assert second.id == first.id
    assert second.is_available_for_urgent is True
    assert second.max_waiting_time == 15
    assert second.available_until is not None
    assert second.last_updated >= first_stamp
    count = (await db.execute(select(func.count(TherapistUrgencyStatus.id)))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_upsert_treats_null_flag_as_unchanged(db, therapist):
    registry = UrgencyRegistry(db)
    await registry.upsert_status(therapist.id, {"is_available_for_urgent": True})
    status = (await registry.upsert_status(therapist.id, {"is_available_for_urgent": None})).value
    assert status.is_available_for_urgent is True


@pytest.mark.asyncio
async def test_upsert_rejects_unknown_fields(db, therapist):
    with pytest.raises(ValueError):
        await UrgencyRegistry(db).upsert_status(therapist.id, {"therapist_id": 3})


@pytest.mark.asyncio
async def test_matchable_therapists_come_with_profiles(db, therapist, patient):
    registry = UrgencyRegistry(db)
    await registry.upsert_status(therapist.id, {"is_available_for_urgent": True, "max_waiting_time": 10})

    rows = (await registry.list_matchable_therapists(NOW)).value

    assert [(user.id, status.max_waiting_time) for user, status in rows] == [(therapist.id, 10)]


class BrokenSession:
    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("too many connections"))

    async def rollback(self):
        pass


@pytest.mark.asyncio
async def test_lookup_failure_is_reported(caplog):
    registry = UrgencyRegistry(BrokenSession())
    with caplog.at_level("ERROR"):
        outcome = await registry.list_matchable_ids(NOW)
    assert outcome.kind is OutcomeKind.STORAGE_ERROR
    assert "Emergency matching unavailable" in caplog.text
