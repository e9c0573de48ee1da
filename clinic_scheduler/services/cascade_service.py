# clinic_scheduler/services/cascade_service.py
"""Bulk cancellation when a doctor becomes unavailable on a date.

Runs as three separate stages: compute the affected set, cancel each
appointment in its own transaction, then send notices. A notice that fails in
the last stage leaves the cancellation committed and is reported.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud, models
from ..compliance_logger import compliance_logger
from ..errors import IllegalTransition
from . import lifecycle_service
from .notification_service import NotificationEvent

logger = structlog.get_logger(__name__)

CANCELLABLE_STATUSES = (models.AppointmentStatus.scheduled, models.AppointmentStatus.confirmed)


@dataclass
class CascadeReport:
    date: date
    cancelled: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    notified: List[str] = field(default_factory=list)
    notification_failures: List[Dict[str, str]] = field(default_factory=list)


def cancellation_reason(exception: models.AvailabilityException) -> str:
    return f"Doctor unavailable: {exception.reason}"


def affected_appointments(db: Session, doctor_id: int, day: date, tz=None) -> List[models.Appointment]:
    """Stage 1: scheduled or confirmed appointments starting on the local date."""
    return crud.appointments_on_local_date(db, doctor_id, day, CANCELLABLE_STATUSES, tz)


def apply_cancellations(
    db: Session,
    appointments: List[models.Appointment],
    reason: str,
    now: datetime,
    report: CascadeReport,
) -> List[models.Appointment]:
    """Stage 2: cancel each appointment in its own transaction."""
    cancelled = []
    for appointment in appointments:
        appointment_id = appointment.appointment_id
        try:
            lifecycle_service.apply_transition(appointment, models.AppointmentStatus.cancelled, now, reason)
            compliance_logger.log_event(
                db, action="APPOINTMENT_CASCADE_CANCEL", category="APPOINTMENT",
                resource_type="appointment", resource_id=appointment_id, details=reason,
            )
            db.commit()
        except (IllegalTransition, SQLAlchemyError) as e:
            db.rollback()
            report.failed.append({"appointment_id": appointment_id, "error": str(e)})
            logger.error("cascade_cancel_failed", appointment_id=appointment_id, error=str(e))
            continue
        cancelled.append(appointment)
        report.cancelled.append(appointment_id)
    return cancelled


async def dispatch_cancellations(
    db: Session,
    appointments: List[models.Appointment],
    notifier,
    now: datetime,
    report: CascadeReport,
) -> None:
    """Stage 3: one cancellation notice per cancelled appointment."""
    for appointment in appointments:
        appointment_id = appointment.appointment_id
        try:
            if await lifecycle_service.deliver_event(db, appointment, NotificationEvent.cancellation, notifier, now):
                report.notified.append(appointment_id)
        except Exception as e:
            report.notification_failures.append({"appointment_id": appointment_id, "error": str(e)})
            logger.warning("cascade_notice_failed", appointment_id=appointment_id, error=str(e))


async def cancel_for_exception(
    db: Session,
    doctor: models.Doctor,
    exception: models.AvailabilityException,
    now: datetime,
    notifier,
    tz=None,
) -> CascadeReport:
    day = exception.date
    reason = cancellation_reason(exception)
    report = CascadeReport(date=day)

    affected = affected_appointments(db, doctor.id, day, tz)
    if not affected:
        return report

    cancelled = apply_cancellations(db, affected, reason, now, report)
    await dispatch_cancellations(db, cancelled, notifier, now, report)

    logger.info(
        "cascade_complete",
        doctor_id=doctor.id,
        date=day.isoformat(),
        cancelled=len(report.cancelled),
        failed=len(report.failed),
        notified=len(report.notified),
        notification_failures=len(report.notification_failures),
    )
    return report


async def redeliver_cancellation_notices(
    db: Session,
    now: datetime,
    notifier,
    lookback: timedelta = timedelta(days=7),
) -> Dict[str, int]:
    """Retry cancellation notices that failed earlier, for appointments still ahead."""
    pending = crud.unnotified_cancellations(db, now - lookback, now)
    sent = failed = 0
    for appointment in pending:
        try:
            if await lifecycle_service.deliver_event(db, appointment, NotificationEvent.cancellation, notifier, now):
                sent += 1
        except Exception as e:
            failed += 1
            logger.warning("cancellation_notice_retry_failed",
                           appointment_id=appointment.appointment_id, error=str(e))
    return {"total": len(pending), "sent": sent, "failed": failed}
