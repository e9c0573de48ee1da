# clinic_scheduler/services/conflict_service.py
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from .. import crud, models
from ..timeutils import ensure_utc

logger = structlog.get_logger(__name__)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intervals [a_start, a_end) and [b_start, b_end) intersect.

    This is the only overlap test used for scheduling. The slot generator and
    the booking admission check both call it, so a slot shown as free is
    exactly a slot the checker will admit.
    """
    return a_start < b_end and b_start < a_end


def find_conflicts(start: datetime, end: datetime, appointments: Iterable[models.Appointment]) -> List[models.Appointment]:
    start, end = ensure_utc(start), ensure_utc(end)
    return [
        appointment for appointment in appointments
        if appointment.status in models.LIVE_STATUSES
        and intervals_overlap(start, end, ensure_utc(appointment.start_time), ensure_utc(appointment.end_time))
    ]


def is_slot_available(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    duration_minutes: int,
    exclude_appointment_id: Optional[str] = None,
) -> bool:
    """True when no live appointment of the doctor overlaps the candidate.

    Working hours, breaks and exceptions are not consulted here. A True result
    is not a reservation; admission happens in ``booking_service``.
    """
    start = ensure_utc(start_time)
    end = start + timedelta(minutes=duration_minutes)
    candidates = crud.live_appointments_overlapping(
        db, doctor_id, start, end, exclude_appointment_id=exclude_appointment_id
    )
    conflicts = find_conflicts(start, end, candidates)
    if conflicts:
        logger.debug(
            "slot_conflict",
            doctor_id=doctor_id,
            start=start.isoformat(),
            conflicts=[a.appointment_id for a in conflicts],
        )
    return not conflicts
