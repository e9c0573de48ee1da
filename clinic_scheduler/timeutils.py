# clinic_scheduler/timeutils.py
"""Conversions between stored UTC instants and the clinic's wall clock.

Schedules are expressed in clinic-local wall time (``Time`` columns, 0=Monday
weekdays); appointments are stored as UTC instants. Every conversion between
the two goes through this module.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from .config import get_settings


def clinic_tz() -> ZoneInfo:
    return get_settings().clinic_tz


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from stores that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc(value: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Normalise caller input. Naive values are clinic-local wall time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz or clinic_tz())
    return value.astimezone(timezone.utc)


def local_datetime(day: date, wall: time, tz: Optional[ZoneInfo] = None) -> datetime:
    return datetime.combine(day, wall).replace(tzinfo=tz or clinic_tz())


def local_date(value: datetime, tz: Optional[ZoneInfo] = None) -> date:
    return ensure_utc(value).astimezone(tz or clinic_tz()).date()


def local_day_bounds(day: date, tz: Optional[ZoneInfo] = None) -> Tuple[datetime, datetime]:
    """UTC [start, end) of one clinic-local calendar day."""
    tz = tz or clinic_tz()
    start = datetime.combine(day, time.min).replace(tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min).replace(tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
