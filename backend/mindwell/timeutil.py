"""UTC helpers.

All timestamps are handled in UTC. Values read back from SQLite come out
naive, values from PostgreSQL ``timestamptz`` come out aware; ``as_utc``
brings both to the same aware-UTC form before any comparison.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_date(value: datetime) -> date:
    return as_utc(value).date()


def utc_day_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Inclusive start and end of the UTC calendar day containing ``value``."""
    day = utc_date(value)
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start, end
