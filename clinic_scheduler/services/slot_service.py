# clinic_scheduler/services/slot_service.py
"""Bookable slots for one doctor and one clinic-local date.

Slots are recomputed on every call from the weekly schedule, the breaks for
that weekday, any availability exception and the doctor's live appointments.
Nothing here reads the wall clock; "now" always comes from the caller.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from .. import crud, models
from ..config import get_settings
from ..errors import InvalidScheduleConfig, SlotUnavailable
from ..timeutils import clinic_tz, ensure_utc, local_datetime, local_day_bounds, local_date
from .availability_service import exception_for, narrow_window
from .conflict_service import intervals_overlap
from .schedule_service import breaks_for, working_day_for

logger = structlog.get_logger(__name__)

REASON_AVAILABLE = "available"
REASON_BREAK = "break"
REASON_BOOKED = "booked"


@dataclass(frozen=True)
class Slot:
    start_time: datetime  # UTC
    end_time: datetime
    available: bool
    reason: str = REASON_AVAILABLE


def working_window(
    doctor: models.Doctor,
    day: date,
    tz=None,
    half_day_reference: Optional[time] = None,
) -> Optional[Tuple[datetime, datetime]]:
    """UTC window the doctor can be booked in on ``day``, or None when closed."""
    tz = tz or clinic_tz()
    entry = working_day_for(doctor, day)
    if entry is None:
        return None
    start = local_datetime(day, entry.start_time, tz)
    end = local_datetime(day, entry.end_time, tz)

    exception = exception_for(doctor, day)
    if exception is not None:
        narrowed = narrow_window(exception.type, start, end, half_day_reference)
        if narrowed is None:
            return None
        start, end = narrowed
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def break_windows(doctor: models.Doctor, day: date, tz=None) -> List[Tuple[datetime, datetime, models.BreakTime]]:
    tz = tz or clinic_tz()
    return [
        (
            local_datetime(day, b.start_time, tz).astimezone(timezone.utc),
            local_datetime(day, b.end_time, tz).astimezone(timezone.utc),
            b,
        )
        for b in breaks_for(doctor, day)
    ]


def generate_slots(
    doctor: models.Doctor,
    day: date,
    now: datetime,
    appointments: Iterable[models.Appointment],
    tz=None,
    half_day_reference: Optional[time] = None,
) -> List[Slot]:
    window = working_window(doctor, day, tz, half_day_reference)
    if window is None:
        return []
    window_start, window_end = window

    step = timedelta(minutes=doctor.slot_duration)
    breaks = break_windows(doctor, day, tz)
    busy = [
        (ensure_utc(a.start_time), ensure_utc(a.end_time))
        for a in appointments
        if a.doctor_id == doctor.id and a.status in models.LIVE_STATUSES
    ]
    now = ensure_utc(now)

    slots = []
    current = window_start
    while current < window_end:
        slot_end = current + step
        if slot_end > window_end:
            break
        if current >= now:
            if any(intervals_overlap(current, slot_end, b_start, b_end) for b_start, b_end, _ in breaks):
                slots.append(Slot(current, slot_end, False, REASON_BREAK))
            elif any(intervals_overlap(current, slot_end, a_start, a_end) for a_start, a_end in busy):
                slots.append(Slot(current, slot_end, False, REASON_BOOKED))
            else:
                slots.append(Slot(current, slot_end, True))
        current = slot_end
    return slots


def slots_for_doctor(
    db: Session,
    doctor_id: int,
    day: date,
    now: datetime,
    half_day_reference: Optional[time] = None,
    tz=None,
) -> List[Slot]:
    doctor = crud.require_doctor(db, doctor_id, active_only=True)
    day_start, day_end = local_day_bounds(day, tz)
    appointments = crud.live_appointments_overlapping(db, doctor.id, day_start, day_end)
    return generate_slots(doctor, day, now, appointments, tz, half_day_reference)


def availability_range(
    db: Session,
    doctor_id: int,
    start_date: date,
    end_date: date,
    now: datetime,
    tz=None,
) -> List[dict]:
    """Per-day slots for an inclusive date range."""
    if start_date > end_date:
        raise InvalidScheduleConfig("start_date must be on or before end_date")
    max_days = get_settings().availability_max_range_days
    span = (end_date - start_date).days + 1
    if span > max_days:
        raise InvalidScheduleConfig(f"Availability can be requested for at most {max_days} days at a time")

    doctor = crud.require_doctor(db, doctor_id, active_only=True)
    range_start, _ = local_day_bounds(start_date, tz)
    _, range_end = local_day_bounds(end_date, tz)
    appointments = crud.live_appointments_overlapping(db, doctor.id, range_start, range_end)

    days = []
    for offset in range(span):
        day = start_date + timedelta(days=offset)
        slots = generate_slots(doctor, day, now, appointments, tz)
        days.append({"date": day, "available": any(s.available for s in slots), "slots": slots})
    return days


def check_within_schedule(
    doctor: models.Doctor,
    start_time: datetime,
    duration_minutes: int,
    now: datetime,
    tz=None,
    half_day_reference: Optional[time] = None,
) -> None:
    """Raise SlotUnavailable unless [start, start + duration) fits the doctor's day.

    Applies the same window, exception and break rules as ``generate_slots``.
    Existing bookings are left to the conflict checker.
    """
    tz = tz or clinic_tz()
    start = ensure_utc(start_time)
    end = start + timedelta(minutes=duration_minutes)
    if start < ensure_utc(now):
        raise SlotUnavailable("Cannot book an appointment in the past")

    day = local_date(start, tz)
    window = working_window(doctor, day, tz, half_day_reference)
    if window is None:
        raise SlotUnavailable(f"Doctor is not available on {day.isoformat()}")
    window_start, window_end = window
    if start < window_start or end > window_end:
        raise SlotUnavailable("Selected time is outside the doctor's working hours")

    for b_start, b_end, break_time in break_windows(doctor, day, tz):
        if intervals_overlap(start, end, b_start, b_end):
            raise SlotUnavailable(f"Selected time overlaps the doctor's break ({break_time.title})")
