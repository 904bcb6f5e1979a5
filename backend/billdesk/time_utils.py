"""
Clock and timestamp helpers.

All stored timestamps are naive UTC. Session windows are compared against
utcnow(), so mixing aware and naive values would break expiry checks.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC 'now'; the single clock source for billing sessions."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a listing filter bound.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC, or the last microsecond of that day
      when end_of_day is set (so an end_date includes the whole day)
    - naive datetimes are taken as UTC; offsets and "Z" are converted

    Raises ValueError on anything else.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()

    if len(text) == 10:
        day = date.fromisoformat(text)
        if end_of_day:
            return datetime.combine(day, time.min) + timedelta(days=1, microseconds=-1)
        return datetime.combine(day, time.min)

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render a stored timestamp as ISO-8601 seconds with a trailing 'Z'."""
    if dt is None:
        return None
    return _as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"
