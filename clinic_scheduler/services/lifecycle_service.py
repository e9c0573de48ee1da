# clinic_scheduler/services/lifecycle_service.py
"""Appointment status state machine.

    scheduled   -> confirmed | cancelled | no_show
    confirmed   -> in_progress | cancelled | no_show
    in_progress -> completed | no_show
    completed, cancelled, no_show are terminal

``apply_transition`` only mutates the row and reports which notification the
change calls for; committing and dispatching are done by the callers so the
bulk cascade can run those as separate stages.
"""
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from .. import crud, models
from ..compliance_logger import compliance_logger
from ..errors import IllegalTransition
from ..timeutils import ensure_utc
from .notification_service import NotificationEvent

logger = structlog.get_logger(__name__)

S = models.AppointmentStatus

TRANSITIONS = {
    S.scheduled: frozenset({S.confirmed, S.cancelled, S.no_show}),
    S.confirmed: frozenset({S.in_progress, S.cancelled, S.no_show}),
    S.in_progress: frozenset({S.completed, S.no_show}),
    S.completed: frozenset(),
    S.cancelled: frozenset(),
    S.no_show: frozenset(),
}

# Statuses whose details (date, symptoms, notes) can no longer be edited
FROZEN_STATUSES = (S.completed, S.cancelled)


def can_transition(current: models.AppointmentStatus, target: models.AppointmentStatus) -> bool:
    return target in TRANSITIONS[models.AppointmentStatus(current)]


def apply_transition(
    appointment: models.Appointment,
    target: models.AppointmentStatus,
    now: datetime,
    reason: Optional[str] = None,
) -> NotificationEvent:
    current = models.AppointmentStatus(appointment.status)
    target = models.AppointmentStatus(target)
    if not can_transition(current, target):
        raise IllegalTransition(current, target)

    now = ensure_utc(now)
    if target == S.no_show and now < ensure_utc(appointment.start_time):
        raise IllegalTransition(
            current, target,
            f"Cannot change appointment from '{current.value}' to '{target.value}' before its start time",
        )

    appointment.status = target
    appointment.updated_at = now
    if target == S.confirmed:
        appointment.confirmed_at = now
    elif target == S.in_progress:
        appointment.started_at = now
    elif target == S.completed:
        appointment.completed_at = now
    elif target == S.cancelled:
        appointment.cancelled_at = now
        appointment.cancellation_reason = reason

    if target == S.cancelled:
        return NotificationEvent.cancellation
    return NotificationEvent.status_change


def ensure_editable(appointment: models.Appointment, attempted: str) -> None:
    status = models.AppointmentStatus(appointment.status)
    if status in FROZEN_STATUSES:
        raise IllegalTransition(status, attempted, f"Cannot {attempted} a {status.value} appointment")


async def deliver_event(
    db: Session,
    appointment: models.Appointment,
    event: NotificationEvent,
    notifier,
    now: datetime,
    context: Optional[Dict[str, Any]] = None,
) -> bool:
    """Send one lifecycle notification.

    Cancellation notices are claimed with a conditional write before sending,
    so retries and concurrent callers deliver at most one. A failed send
    releases the claim and re-raises.
    """
    if event == NotificationEvent.cancellation:
        if not crud.claim_cancellation_notice(db, appointment.id, now):
            logger.info("cancellation_notice_already_sent", appointment_id=appointment.appointment_id)
            return False
        db.commit()
        try:
            await notifier.deliver(event, appointment, appointment.patient, appointment.doctor, context)
        except Exception:
            crud.release_cancellation_notice(db, appointment.id)
            db.commit()
            raise
        finally:
            db.refresh(appointment)
        return True

    await notifier.deliver(event, appointment, appointment.patient, appointment.doctor, context)
    return True


async def deliver_quietly(db: Session, appointment: models.Appointment, event: NotificationEvent,
                          notifier, now: datetime, context: Optional[Dict[str, Any]] = None) -> bool:
    """Like deliver_event, but a failed send is logged and the change stands."""
    try:
        return await deliver_event(db, appointment, event, notifier, now, context)
    except Exception as e:
        logger.warning("notification_failed", notification_event=event.value,
                       appointment_id=appointment.appointment_id, error=str(e))
        return False


async def transition_appointment(
    db: Session,
    appointment_id: str,
    target: models.AppointmentStatus,
    now: datetime,
    notifier,
    reason: Optional[str] = None,
) -> models.Appointment:
    appointment = crud.require_appointment(db, appointment_id, lock=True)
    previous = models.AppointmentStatus(appointment.status)
    event = apply_transition(appointment, target, now, reason)

    compliance_logger.log_event(
        db, action="APPOINTMENT_STATUS_UPDATE", category="APPOINTMENT",
        resource_type="appointment", resource_id=appointment.appointment_id,
        details=f"{previous.value} -> {appointment.status.value}" + (f" ({reason})" if reason else ""),
    )
    db.commit()
    db.refresh(appointment)
    logger.info("appointment_transitioned", appointment_id=appointment.appointment_id,
                from_status=previous.value, to_status=appointment.status.value)

    await deliver_quietly(db, appointment, event, notifier, now)
    return appointment


async def cancel_appointment(db: Session, appointment_id: str, now: datetime, notifier,
                             reason: Optional[str] = None) -> models.Appointment:
    return await transition_appointment(db, appointment_id, S.cancelled, now, notifier, reason=reason)
