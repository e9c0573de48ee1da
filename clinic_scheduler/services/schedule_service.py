# clinic_scheduler/services/schedule_service.py
from datetime import date, time
from typing import List, Optional, Sequence

import structlog
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..compliance_logger import compliance_logger
from ..errors import InvalidScheduleConfig, NotFound

logger = structlog.get_logger(__name__)

MIN_SLOT_DURATION = 15
MAX_SLOT_DURATION = 120


def validate_window(start: time, end: time, label: str) -> None:
    if end <= start:
        raise InvalidScheduleConfig(
            f"{label} end time ({end.strftime('%H:%M')}) must be after start time ({start.strftime('%H:%M')})"
        )

def validate_slot_duration(minutes: int) -> None:
    if minutes is None or not MIN_SLOT_DURATION <= minutes <= MAX_SLOT_DURATION:
        raise InvalidScheduleConfig(
            f"Slot duration must be between {MIN_SLOT_DURATION} and {MAX_SLOT_DURATION} minutes"
        )

def validate_day_of_week(day_of_week: int) -> None:
    if day_of_week is None or not 0 <= day_of_week <= 6:
        raise InvalidScheduleConfig("day_of_week must be between 0 (Monday) and 6 (Sunday)")


def working_day_for(doctor: models.Doctor, day: date) -> Optional[models.WorkingDay]:
    """The working entry for ``day``'s weekday, or None when the doctor is off."""
    weekday = day.weekday()
    for entry in doctor.working_days:
        if entry.day_of_week == weekday:
            return entry if entry.is_working else None
    return None

def breaks_for(doctor: models.Doctor, day: date) -> List[models.BreakTime]:
    weekday = day.weekday()
    return [b for b in doctor.break_times if b.day_of_week == weekday]


def get_schedule(db: Session, doctor_id: int) -> models.Doctor:
    return crud.require_doctor(db, doctor_id)


def replace_schedule(
    db: Session,
    doctor_id: int,
    working_days: Sequence[schemas.WorkingDayBase],
    slot_duration: Optional[int] = None,
) -> models.Doctor:
    """Replace the weekly working days; days not listed are removed."""
    seen = set()
    for entry in working_days:
        validate_day_of_week(entry.day_of_week)
        if entry.day_of_week in seen:
            raise InvalidScheduleConfig(f"Day {entry.day_of_week} appears more than once")
        seen.add(entry.day_of_week)
        if entry.is_working:
            validate_window(entry.start_time, entry.end_time, "Working hours")
    if slot_duration is not None:
        validate_slot_duration(slot_duration)

    doctor = crud.require_doctor(db, doctor_id, lock=True)
    existing = {wd.day_of_week: wd for wd in doctor.working_days}
    # Update rows in place so the (doctor, day) unique key never collides
    for entry in working_days:
        row = existing.pop(entry.day_of_week, None)
        if row is None:
            doctor.working_days.append(models.WorkingDay(
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                end_time=entry.end_time,
                is_working=entry.is_working,
            ))
        else:
            row.start_time = entry.start_time
            row.end_time = entry.end_time
            row.is_working = entry.is_working
    for row in existing.values():
        doctor.working_days.remove(row)
    if slot_duration is not None:
        doctor.slot_duration = slot_duration

    compliance_logger.log_event(
        db, action="SCHEDULE_WEEK_UPDATE", category="SCHEDULE",
        resource_type="doctor", resource_id=doctor.id,
        details=f"Weekly schedule replaced: {len(working_days)} day(s), slot {doctor.slot_duration} min",
    )
    db.commit()
    db.refresh(doctor)
    logger.info("schedule_replaced", doctor_id=doctor.id, days=sorted(seen), slot_duration=doctor.slot_duration)
    return doctor


def update_working_day(db: Session, doctor_id: int, day_of_week: int, entry: schemas.WorkingDayUpdate) -> models.Doctor:
    validate_day_of_week(day_of_week)
    if entry.is_working:
        validate_window(entry.start_time, entry.end_time, "Working hours")

    doctor = crud.require_doctor(db, doctor_id, lock=True)
    row = next((wd for wd in doctor.working_days if wd.day_of_week == day_of_week), None)
    if row is None:
        doctor.working_days.append(models.WorkingDay(
            day_of_week=day_of_week,
            start_time=entry.start_time,
            end_time=entry.end_time,
            is_working=entry.is_working,
        ))
    else:
        row.start_time = entry.start_time
        row.end_time = entry.end_time
        row.is_working = entry.is_working

    compliance_logger.log_event(
        db, action="SCHEDULE_DAY_UPDATE", category="SCHEDULE",
        resource_type="doctor", resource_id=doctor.id,
        details=f"Day {day_of_week} set to {entry.start_time}-{entry.end_time} (working={entry.is_working})",
    )
    db.commit()
    db.refresh(doctor)
    logger.info("working_day_updated", doctor_id=doctor.id, day_of_week=day_of_week)
    return doctor


# --- Breaks ---
def add_break(db: Session, doctor_id: int, data: schemas.BreakTimeCreate) -> models.BreakTime:
    validate_day_of_week(data.day_of_week)
    validate_window(data.start_time, data.end_time, "Break")

    doctor = crud.require_doctor(db, doctor_id, lock=True)
    break_time = models.BreakTime(
        day_of_week=data.day_of_week,
        start_time=data.start_time,
        end_time=data.end_time,
        title=data.title,
    )
    doctor.break_times.append(break_time)
    compliance_logger.log_event(
        db, action="BREAK_CREATE", category="SCHEDULE",
        resource_type="doctor", resource_id=doctor.id,
        details=f"Break '{data.title}' on day {data.day_of_week} {data.start_time}-{data.end_time}",
    )
    db.commit()
    db.refresh(break_time)
    logger.info("break_added", doctor_id=doctor.id, break_id=break_time.id)
    return break_time

def _require_break(doctor: models.Doctor, break_id: str) -> models.BreakTime:
    for break_time in doctor.break_times:
        if break_time.id == break_id:
            return break_time
    raise NotFound("Break", break_id)

def _given(data: dict, name: str, current):
    value = data.get(name)
    return current if value is None else value

def update_break(db: Session, doctor_id: int, break_id: str, changes: schemas.BreakTimeUpdate) -> models.BreakTime:
    doctor = crud.require_doctor(db, doctor_id, lock=True)
    break_time = _require_break(doctor, break_id)

    data = changes.model_dump(exclude_unset=True)
    # an explicit null keeps the stored value
    day_of_week = _given(data, "day_of_week", break_time.day_of_week)
    start = _given(data, "start_time", break_time.start_time)
    end = _given(data, "end_time", break_time.end_time)
    validate_day_of_week(day_of_week)
    validate_window(start, end, "Break")

    break_time.day_of_week = day_of_week
    break_time.start_time = start
    break_time.end_time = end
    if data.get("title"):
        break_time.title = data["title"]

    compliance_logger.log_event(
        db, action="BREAK_UPDATE", category="SCHEDULE",
        resource_type="break_time", resource_id=break_time.id,
    )
    db.commit()
    db.refresh(break_time)
    return break_time

def remove_break(db: Session, doctor_id: int, break_id: str) -> None:
    doctor = crud.require_doctor(db, doctor_id, lock=True)
    break_time = _require_break(doctor, break_id)
    doctor.break_times.remove(break_time)
    compliance_logger.log_event(
        db, action="BREAK_DELETE", category="SCHEDULE",
        resource_type="break_time", resource_id=break_id,
    )
    db.commit()
    logger.info("break_removed", doctor_id=doctor.id, break_id=break_id)
