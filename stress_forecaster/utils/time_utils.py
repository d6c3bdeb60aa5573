"""
Time and date utilities.

All persisted timestamps are timezone-aware UTC.  A "day" is a calendar
``date``; one ``DailyRecord`` exists per (user, day).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; convert aware datetimes to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_hours(moment: Optional[datetime], now: Optional[datetime] = None) -> Optional[float]:
    """Hours elapsed since ``moment``, or ``None`` if ``moment`` is unknown.

    A ``moment`` in the future yields a negative age.

    Args:
        moment: Timestamp to measure from.
        now:    Reference time (defaults to ``utcnow()``).
    """
    if moment is None:
        return None
    reference = ensure_utc(now) if now is not None else utcnow()
    return (reference - ensure_utc(moment)).total_seconds() / 3600.0


def days_before(day: date, days: int) -> date:
    """Return the date ``days`` calendar days before ``day``."""
    return day - timedelta(days=days)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime (``None`` passes through)."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
