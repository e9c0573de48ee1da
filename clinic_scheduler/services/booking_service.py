# clinic_scheduler/services/booking_service.py
"""Booking entry point: admission, rescheduling and detail edits.

Admission holds the doctor row lock for the whole check-then-insert and
finishes with a conditional bump of ``Doctor.booking_version``. If another
booking for the same doctor committed after our read, the bump matches no
row and the request is rejected instead of double-booking.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..compliance_logger import compliance_logger
from ..errors import IllegalTransition, InvalidScheduleConfig, SlotUnavailable
from ..timeutils import ensure_utc, to_utc
from . import conflict_service, lifecycle_service, slot_service
from .notification_service import NotificationEvent

logger = structlog.get_logger(__name__)

RESCHEDULABLE_STATUSES = (models.AppointmentStatus.scheduled, models.AppointmentStatus.confirmed)


def fee_for(doctor: models.Doctor, appointment_type: models.AppointmentType) -> Optional[Decimal]:
    if appointment_type == models.AppointmentType.follow_up and doctor.follow_up_fee is not None:
        return doctor.follow_up_fee
    if appointment_type == models.AppointmentType.emergency and doctor.emergency_fee is not None:
        return doctor.emergency_fee
    return doctor.consultation_fee


def _admit(
    db: Session,
    doctor: models.Doctor,
    start: datetime,
    duration: int,
    now: datetime,
    tz=None,
    half_day_reference=None,
    exclude_appointment_id: Optional[str] = None,
) -> None:
    """Window, conflict and version checks. Leaves the transaction open."""
    seen_version = doctor.booking_version
    slot_service.check_within_schedule(doctor, start, duration, now, tz, half_day_reference)
    if not conflict_service.is_slot_available(db, doctor.id, start, duration, exclude_appointment_id):
        raise SlotUnavailable()
    if not crud.bump_booking_version(db, doctor.id, seen_version):
        logger.warning("booking_version_conflict", doctor_id=doctor.id, seen_version=seen_version)
        raise SlotUnavailable()


async def book_appointment(
    db: Session,
    data: schemas.AppointmentCreate,
    now: datetime,
    notifier,
    tz=None,
) -> models.Appointment:
    crud.require_patient(db, data.patient_id, active_only=True)
    doctor = crud.require_doctor(db, data.doctor_id, lock=True, active_only=True)

    duration = data.duration_minutes if data.duration_minutes is not None else doctor.slot_duration
    if duration <= 0:
        raise InvalidScheduleConfig("Appointment duration must be a positive number of minutes")
    start = to_utc(data.start_time, tz)

    try:
        _admit(db, doctor, start, duration, now, tz, data.half_day_reference)
        appointment = models.Appointment(
            appointment_id=crud.generate_appointment_id(now),
            patient_id=data.patient_id,
            doctor_id=doctor.id,
            start_time=start,
            end_time=start + timedelta(minutes=duration),
            duration_minutes=duration,
            appointment_type=data.appointment_type,
            priority=data.priority,
            booking_source=data.booking_source,
            symptoms=list(data.symptoms),
            notes=data.notes,
            special_requirements=data.special_requirements,
            status=models.AppointmentStatus.scheduled,
            payment_status=models.PaymentStatus.pending,
            payment_amount=fee_for(doctor, data.appointment_type),
            payment_method=data.payment_method,
            reminders_sent=0,
            created_at=ensure_utc(now),
        )
        db.add(appointment)
        compliance_logger.log_event(
            db, action="APPOINTMENT_CREATE", category="APPOINTMENT",
            resource_type="appointment", resource_id=appointment.appointment_id,
            details=f"Doctor {doctor.id}, {start.isoformat()} for {duration} min via {data.booking_source.value}",
        )
        db.commit()
    except SlotUnavailable:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning("booking_integrity_error", doctor_id=data.doctor_id, error=str(e.orig))
        raise SlotUnavailable()

    db.refresh(appointment)
    logger.info("appointment_booked", appointment_id=appointment.appointment_id,
                doctor_id=doctor.id, start=start.isoformat(), duration=duration)

    await lifecycle_service.deliver_quietly(db, appointment, NotificationEvent.confirmation, notifier, now)
    return appointment


async def reschedule_appointment(
    db: Session,
    appointment_id: str,
    new_start: datetime,
    now: datetime,
    notifier,
    tz=None,
    half_day_reference=None,
) -> models.Appointment:
    """Move an appointment; status is kept and reminder bookkeeping restarts."""
    appointment = crud.require_appointment(db, appointment_id)
    doctor = crud.require_doctor(db, appointment.doctor_id, lock=True, active_only=True)
    appointment = crud.require_appointment(db, appointment_id, lock=True)
    status = models.AppointmentStatus(appointment.status)
    if status not in RESCHEDULABLE_STATUSES:
        raise IllegalTransition(
            status, "rescheduled", f"Cannot reschedule a {status.value} appointment"
        )

    start = to_utc(new_start, tz)
    previous_start = ensure_utc(appointment.start_time)

    try:
        _admit(db, doctor, start, appointment.duration_minutes, now, tz, half_day_reference,
               exclude_appointment_id=appointment.appointment_id)
        appointment.start_time = start
        appointment.end_time = start + timedelta(minutes=appointment.duration_minutes)
        appointment.reminders_sent = 0
        appointment.last_reminder_sent = None
        appointment.updated_at = ensure_utc(now)
        compliance_logger.log_event(
            db, action="APPOINTMENT_RESCHEDULE", category="APPOINTMENT",
            resource_type="appointment", resource_id=appointment.appointment_id,
            details=f"{previous_start.isoformat()} -> {start.isoformat()}",
        )
        db.commit()
    except SlotUnavailable:
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info("appointment_rescheduled", appointment_id=appointment.appointment_id,
                previous_start=previous_start.isoformat(), start=start.isoformat())
    await lifecycle_service.deliver_quietly(
        db, appointment, NotificationEvent.reschedule, notifier, now,
        context={"previous_start": previous_start},
    )
    return appointment


def update_appointment_details(
    db: Session,
    appointment_id: str,
    changes: schemas.AppointmentDetailsUpdate,
    now: datetime,
) -> models.Appointment:
    appointment = crud.require_appointment(db, appointment_id, lock=True)
    lifecycle_service.ensure_editable(appointment, "update")

    data = changes.model_dump(exclude_unset=True)
    for name, value in data.items():
        if value is None and name in ("appointment_type", "priority"):
            continue
        if name == "symptoms" and value is not None:
            value = [s.strip() for s in value if s and s.strip()]
        setattr(appointment, name, value)
    if "appointment_type" in data and data["appointment_type"] is not None:
        appointment.payment_amount = fee_for(appointment.doctor, data["appointment_type"])
    appointment.updated_at = ensure_utc(now)

    compliance_logger.log_event(
        db, action="APPOINTMENT_UPDATE", category="APPOINTMENT",
        resource_type="appointment", resource_id=appointment.appointment_id,
        details=", ".join(sorted(data)) or None,
    )
    db.commit()
    db.refresh(appointment)
    return appointment
