# clinic_scheduler/services/reminder_service.py
"""Reminder trigger.

Two entry points share one decision function: the daily sweep over the next
clinic-local calendar day, and the on-demand single-appointment path. A
reminder counts only once the notifier has accepted it.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from .. import crud, models
from ..config import Settings, get_settings
from ..errors import SweepInProgress
from ..timeutils import ensure_utc, local_date, local_day_bounds
from .notification_service import NotificationEvent

logger = structlog.get_logger(__name__)

REMINDABLE_STATUSES = (models.AppointmentStatus.scheduled, models.AppointmentStatus.confirmed)

# One sweep per process at a time
_sweep_lock = asyncio.Lock()


@dataclass(frozen=True)
class ReminderDecision:
    due: bool
    reason: str


@dataclass
class ReminderOutcome:
    appointment_id: str
    sent: bool
    reason: str
    reminders_sent: int


@dataclass
class SweepSummary:
    window_start: datetime
    window_end: datetime
    total: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0


def reminder_decision(
    appointment: models.Appointment,
    patient: Optional[models.Patient],
    now: datetime,
    max_reminders: int,
    tolerance_hours: float = 1.0,
    default_lead_hours: int = 24,
) -> ReminderDecision:
    if appointment.status not in REMINDABLE_STATUSES:
        return ReminderDecision(False, "status")
    if patient is None or not patient.reminders_enabled:
        return ReminderDecision(False, "opted_out")
    if (appointment.reminders_sent or 0) >= max_reminders:
        return ReminderDecision(False, "max_reminders")

    hours_until = (ensure_utc(appointment.start_time) - ensure_utc(now)).total_seconds() / 3600
    if hours_until <= 0:
        return ReminderDecision(False, "started")
    lead_hours = patient.reminder_lead_hours if patient.reminder_lead_hours is not None else default_lead_hours
    if hours_until > lead_hours + tolerance_hours:
        return ReminderDecision(False, "too_early")
    return ReminderDecision(True, "due")


async def _remind(
    db: Session,
    appointment: models.Appointment,
    now: datetime,
    notifier,
    settings: Settings,
    timeout: Optional[float],
) -> ReminderOutcome:
    decision = reminder_decision(
        appointment,
        appointment.patient,
        now,
        settings.max_reminders,
        settings.reminder_tolerance_hours,
        settings.default_reminder_lead_hours,
    )
    if not decision.due:
        return ReminderOutcome(appointment.appointment_id, False, decision.reason, appointment.reminders_sent)

    # Notifier failure or timeout propagates and the counter is left alone
    await asyncio.wait_for(
        notifier.deliver(NotificationEvent.reminder, appointment, appointment.patient, appointment.doctor),
        timeout=timeout,
    )
    counted = crud.record_reminder_sent(db, appointment.id, settings.max_reminders, now)
    db.commit()
    db.refresh(appointment)
    if not counted:
        logger.warning("reminder_counter_at_cap", appointment_id=appointment.appointment_id)
    logger.info("reminder_sent", appointment_id=appointment.appointment_id,
                reminders_sent=appointment.reminders_sent)
    return ReminderOutcome(appointment.appointment_id, True, decision.reason, appointment.reminders_sent)


async def send_reminder(
    db: Session,
    appointment_id: str,
    now: datetime,
    notifier,
    settings: Optional[Settings] = None,
    timeout: Optional[float] = None,
) -> ReminderOutcome:
    """On-demand path. Delivery errors reach the caller."""
    settings = settings or get_settings()
    appointment = crud.require_appointment(db, appointment_id)
    if timeout is None:
        timeout = settings.reminder_send_timeout_seconds
    return await _remind(db, appointment, now, notifier, settings, timeout)


def sweep_window(now: datetime, tz=None):
    """UTC bounds of the next clinic-local calendar day."""
    tomorrow = local_date(now, tz) + timedelta(days=1)
    return local_day_bounds(tomorrow, tz)


def sweep_in_progress() -> bool:
    return _sweep_lock.locked()


async def run_reminder_sweep(
    db: Session,
    now: datetime,
    notifier,
    settings: Optional[Settings] = None,
    tz=None,
) -> SweepSummary:
    """Remind every eligible appointment starting tomorrow.

    Raises SweepInProgress instead of starting a second concurrent run.
    """
    if _sweep_lock.locked():
        raise SweepInProgress()
    async with _sweep_lock:
        return await _sweep(db, now, notifier, settings or get_settings(), tz)


async def _sweep(db: Session, now: datetime, notifier, settings: Settings, tz) -> SweepSummary:
    window_start, window_end = sweep_window(now, tz)
    summary = SweepSummary(window_start=window_start, window_end=window_end)
    candidates = crud.reminder_candidates(db, window_start, window_end, settings.max_reminders)
    summary.total = len(candidates)
    logger.info("reminder_sweep_started", window_start=window_start.isoformat(),
                window_end=window_end.isoformat(), candidates=summary.total)

    for appointment in candidates:
        appointment_id = appointment.appointment_id
        try:
            outcome = await _remind(db, appointment, now, notifier, settings,
                                    settings.reminder_send_timeout_seconds)
        except asyncio.TimeoutError:
            db.rollback()
            summary.failed += 1
            logger.error("reminder_timed_out", appointment_id=appointment_id,
                         timeout=settings.reminder_send_timeout_seconds)
            continue
        except Exception as e:
            db.rollback()
            summary.failed += 1
            logger.error("reminder_failed", appointment_id=appointment_id, error=str(e))
            continue
        if outcome.sent:
            summary.sent += 1
        else:
            summary.skipped += 1

    logger.info("reminder_sweep_finished", total=summary.total, sent=summary.sent,
                skipped=summary.skipped, failed=summary.failed)
    return summary
