# clinic_scheduler/services/availability_service.py
from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..compliance_logger import compliance_logger
from ..errors import InvalidScheduleConfig, NotFound
from ..timeutils import ensure_utc, local_date
from . import cascade_service

logger = structlog.get_logger(__name__)

MAX_EXCEPTION_RANGE_DAYS = 366

Window = Tuple[datetime, datetime]


# --- Window narrowing, one rule per exception type ---
def _midpoint(start: datetime, end: datetime) -> datetime:
    """Middle of the window, truncated to the minute."""
    half_minutes = int((end - start).total_seconds() // 60) // 2
    return start + timedelta(minutes=half_minutes)

def _full_day(start, end, reference) -> Optional[Window]:
    return None

def _morning(start, end, reference) -> Optional[Window]:
    # Morning off: the doctor sees patients in the second half only
    return _midpoint(start, end), end

def _afternoon(start, end, reference) -> Optional[Window]:
    return start, _midpoint(start, end)

def _half_day(start, end, reference) -> Optional[Window]:
    """Blocks the half containing ``reference``; without one the day is closed."""
    if reference is None:
        return None
    ref = start.replace(hour=reference.hour, minute=reference.minute, second=0, microsecond=0)
    mid = _midpoint(start, end)
    if start <= ref < mid:
        return _morning(start, end, reference)
    if mid <= ref < end:
        return _afternoon(start, end, reference)
    return None

WINDOW_RULES = {
    models.ExceptionType.full_day: _full_day,
    models.ExceptionType.morning: _morning,
    models.ExceptionType.afternoon: _afternoon,
    models.ExceptionType.half_day: _half_day,
}

def narrow_window(
    exception_type: models.ExceptionType,
    start: datetime,
    end: datetime,
    half_day_reference: Optional[time] = None,
) -> Optional[Window]:
    """Remaining bookable window on an exception date, or None when closed.

    ``start``/``end`` are the clinic-local working window for the date.
    """
    return WINDOW_RULES[models.ExceptionType(exception_type)](start, end, half_day_reference)


# --- Lookups ---
def exception_for(doctor: models.Doctor, day: date) -> Optional[models.AvailabilityException]:
    for exception in doctor.availability_exceptions:
        if exception.date == day:
            return exception
    return None

def _require_exception(doctor: models.Doctor, exception_id: str) -> models.AvailabilityException:
    for exception in doctor.availability_exceptions:
        if exception.id == exception_id:
            return exception
    raise NotFound("Availability exception", exception_id)

def list_exceptions(
    db: Session,
    doctor_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[models.AvailabilityException]:
    crud.require_doctor(db, doctor_id)
    query = db.query(models.AvailabilityException).filter(models.AvailabilityException.doctor_id == doctor_id)
    if start_date is not None:
        query = query.filter(models.AvailabilityException.date >= start_date)
    if end_date is not None:
        query = query.filter(models.AvailabilityException.date <= end_date)
    return query.order_by(models.AvailabilityException.date).all()


def _reject_past(day: date, now: datetime, tz=None) -> None:
    if day < local_date(now, tz):
        raise InvalidScheduleConfig("Cannot add past dates as unavailable")

def _commit_or_duplicate(db: Session, day_label: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvalidScheduleConfig(f"Doctor is already marked unavailable on {day_label}")


# --- Mutations ---
async def add_exception(
    db: Session,
    doctor_id: int,
    data: schemas.AvailabilityExceptionCreate,
    now: datetime,
    notifier,
    tz=None,
) -> Tuple[models.AvailabilityException, cascade_service.CascadeReport]:
    _reject_past(data.date, now, tz)
    doctor = crud.require_doctor(db, doctor_id, lock=True)
    if exception_for(doctor, data.date) is not None:
        raise InvalidScheduleConfig(f"Doctor is already marked unavailable on {data.date.isoformat()}")

    exception = models.AvailabilityException(
        date=data.date,
        reason=data.reason,
        type=data.type,
        notes=data.notes,
        created_at=ensure_utc(now),
        updated_at=ensure_utc(now),
    )
    doctor.availability_exceptions.append(exception)
    compliance_logger.log_event(
        db, action="EXCEPTION_CREATE", category="AVAILABILITY",
        resource_type="doctor", resource_id=doctor.id,
        details=f"{data.type.value} on {data.date.isoformat()}: {data.reason}",
    )
    _commit_or_duplicate(db, data.date.isoformat())
    db.refresh(exception)
    logger.info("availability_exception_added", doctor_id=doctor.id,
                date=data.date.isoformat(), type=data.type.value)

    report = await cascade_service.cancel_for_exception(db, doctor, exception, now, notifier, tz)
    return exception, report


async def add_exception_range(
    db: Session,
    doctor_id: int,
    data: schemas.AvailabilityExceptionRangeCreate,
    now: datetime,
    notifier,
    tz=None,
) -> Tuple[List[models.AvailabilityException], List[cascade_service.CascadeReport]]:
    """One exception per date in [start_date, end_date]; dates already covered are skipped."""
    if data.start_date > data.end_date:
        raise InvalidScheduleConfig("start_date must be on or before end_date")
    span = (data.end_date - data.start_date).days + 1
    if span > MAX_EXCEPTION_RANGE_DAYS:
        raise InvalidScheduleConfig(f"A range may cover at most {MAX_EXCEPTION_RANGE_DAYS} days")
    _reject_past(data.start_date, now, tz)

    doctor = crud.require_doctor(db, doctor_id, lock=True)
    covered = {e.date for e in doctor.availability_exceptions}
    added = []
    for offset in range(span):
        day = data.start_date + timedelta(days=offset)
        if day in covered:
            continue
        exception = models.AvailabilityException(
            date=day,
            reason=data.reason,
            type=data.type,
            notes=data.notes,
            created_at=ensure_utc(now),
            updated_at=ensure_utc(now),
        )
        doctor.availability_exceptions.append(exception)
        added.append(exception)

    if not added:
        raise InvalidScheduleConfig("All dates in the selected range are already marked as unavailable")

    compliance_logger.log_event(
        db, action="EXCEPTION_BULK_CREATE", category="AVAILABILITY",
        resource_type="doctor", resource_id=doctor.id,
        details=f"{len(added)} date(s) {data.start_date.isoformat()}..{data.end_date.isoformat()}: {data.reason}",
    )
    _commit_or_duplicate(db, f"a date in {data.start_date.isoformat()}..{data.end_date.isoformat()}")
    logger.info("availability_range_added", doctor_id=doctor.id, added=len(added), skipped=span - len(added))

    reports = []
    for exception in added:
        reports.append(await cascade_service.cancel_for_exception(db, doctor, exception, now, notifier, tz))
    return added, reports


async def update_exception(
    db: Session,
    doctor_id: int,
    exception_id: str,
    changes: schemas.AvailabilityExceptionUpdate,
    now: datetime,
    notifier,
    tz=None,
) -> Tuple[models.AvailabilityException, Optional[cascade_service.CascadeReport]]:
    """Edit an exception. Moving it or changing its type cascades over its date."""
    doctor = crud.require_doctor(db, doctor_id, lock=True)
    exception = _require_exception(doctor, exception_id)
    data = changes.model_dump(exclude_unset=True)

    new_date = data.get("date")
    moved = new_date is not None and new_date != exception.date
    if moved:
        _reject_past(new_date, now, tz)
        if exception_for(doctor, new_date) is not None:
            raise InvalidScheduleConfig(f"Doctor is already marked unavailable on {new_date.isoformat()}")
        exception.date = new_date
    retyped = data.get("type") is not None and data["type"] != exception.type
    for name in ("reason", "type", "notes"):
        if name in data and (data[name] is not None or name == "notes"):
            setattr(exception, name, data[name])
    exception.updated_at = ensure_utc(now)

    compliance_logger.log_event(
        db, action="EXCEPTION_UPDATE", category="AVAILABILITY",
        resource_type="availability_exception", resource_id=exception.id,
        details=", ".join(sorted(data)) or None,
    )
    _commit_or_duplicate(db, exception.date.isoformat())
    db.refresh(exception)

    report = None
    if moved or retyped:
        report = await cascade_service.cancel_for_exception(db, doctor, exception, now, notifier, tz)
    return exception, report


def remove_exception(db: Session, doctor_id: int, exception_id: str) -> None:
    """Removes the exception. Appointments it cancelled stay cancelled."""
    doctor = crud.require_doctor(db, doctor_id, lock=True)
    exception = _require_exception(doctor, exception_id)
    removed_date = exception.date
    doctor.availability_exceptions.remove(exception)
    compliance_logger.log_event(
        db, action="EXCEPTION_DELETE", category="AVAILABILITY",
        resource_type="availability_exception", resource_id=exception_id,
        details=removed_date.isoformat(),
    )
    db.commit()
    logger.info("availability_exception_removed", doctor_id=doctor_id, date=removed_date.isoformat())


def bulk_remove_exceptions(db: Session, doctor_id: int, exception_ids: Iterable[str]) -> int:
    ids = set(exception_ids)
    if not ids:
        raise InvalidScheduleConfig("No exception ids given")
    doctor = crud.require_doctor(db, doctor_id, lock=True)
    matched = [e for e in doctor.availability_exceptions if e.id in ids]
    if not matched:
        raise NotFound("Availability exception", ", ".join(sorted(ids)))
    for exception in matched:
        doctor.availability_exceptions.remove(exception)
    compliance_logger.log_event(
        db, action="EXCEPTION_BULK_DELETE", category="AVAILABILITY",
        resource_type="doctor", resource_id=doctor_id,
        details=f"Removed {len(matched)} of {len(ids)} requested exception(s)",
    )
    db.commit()
    return len(matched)


def exception_summary(doctor: models.Doctor, today: date) -> dict:
    exceptions = list(doctor.availability_exceptions)
    return {
        "total": len(exceptions),
        "upcoming": sum(1 for e in exceptions if e.date >= today),
        "past": sum(1 for e in exceptions if e.date < today),
        "this_month": sum(1 for e in exceptions if (e.date.year, e.date.month) == (today.year, today.month)),
        "by_type": dict(Counter(models.ExceptionType(e.type).value for e in exceptions)),
        "by_reason": dict(Counter(e.reason for e in exceptions)),
    }
