from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time, tz-naive. Every stored timestamp uses this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_days(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)


def parse_date_bound(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    """
    YYYY-MM-DD query param -> naive UTC datetime.

    from_date maps to the first second of the day, to_date (end_of_day=True)
    to the last one, so a single day is an inclusive range.
    """
    if not value or not value.strip():
        return None
    day = date.fromisoformat(value.strip())
    return datetime.combine(day, time.max.replace(microsecond=0) if end_of_day else time.min)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render as ISO-8601 with a trailing Z, seconds precision. Naive means UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
