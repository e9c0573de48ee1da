# clinic_scheduler/crud.py - data access for the scheduling services
from sqlalchemy.orm import Session
from sqlalchemy import update
from datetime import datetime, date
from typing import Optional, List, Iterable
import secrets
import logging

from . import models
from .errors import NotFound
from .timeutils import ensure_utc, local_day_bounds

logger = logging.getLogger(__name__)


# --- Directory lookups ---
def get_doctor(db: Session, doctor_id: int, lock: bool = False) -> Optional[models.Doctor]:
    query = db.query(models.Doctor).filter(models.Doctor.id == doctor_id)
    if lock:
        # Serialises bookings and schedule edits for one doctor
        query = query.with_for_update().populate_existing()
    return query.first()

def require_doctor(db: Session, doctor_id: int, lock: bool = False, active_only: bool = False) -> models.Doctor:
    doctor = get_doctor(db, doctor_id, lock=lock)
    if doctor is None or (active_only and not doctor.is_active):
        raise NotFound("Doctor", doctor_id)
    return doctor

def get_patient(db: Session, patient_id: int) -> Optional[models.Patient]:
    return db.query(models.Patient).filter(models.Patient.id == patient_id).first()

def require_patient(db: Session, patient_id: int, active_only: bool = False) -> models.Patient:
    patient = get_patient(db, patient_id)
    if patient is None or (active_only and not patient.is_active):
        raise NotFound("Patient", patient_id)
    return patient

def create_doctor(db: Session, **fields) -> models.Doctor:
    fields.setdefault("doctor_code", f"DOC-{secrets.token_hex(4).upper()}")
    doctor = models.Doctor(**fields)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    logger.info(f"Created doctor {doctor.doctor_code} ({doctor.full_name})")
    return doctor

def create_patient(db: Session, **fields) -> models.Patient:
    fields.setdefault("patient_code", f"PAT-{secrets.token_hex(4).upper()}")
    patient = models.Patient(**fields)
    db.add(patient)
    db.commit()
    db.refresh(patient)
    logger.info(f"Created patient {patient.patient_code}")
    return patient


# --- Appointments ---
def generate_appointment_id(now: datetime) -> str:
    """Human readable id, e.g. APT-1718000000000-9F3A1C"""
    millis = int(ensure_utc(now).timestamp() * 1000)
    return f"APT-{millis}-{secrets.token_hex(3).upper()}"

def get_appointment(db: Session, appointment_id: str, lock: bool = False) -> Optional[models.Appointment]:
    query = db.query(models.Appointment).filter(models.Appointment.appointment_id == appointment_id)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()

def require_appointment(db: Session, appointment_id: str, lock: bool = False) -> models.Appointment:
    appointment = get_appointment(db, appointment_id, lock=lock)
    if appointment is None:
        raise NotFound("Appointment", appointment_id)
    return appointment

def list_appointments(
    db: Session,
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status: Optional[models.AppointmentStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Appointment]:
    query = db.query(models.Appointment)
    if doctor_id is not None:
        query = query.filter(models.Appointment.doctor_id == doctor_id)
    if patient_id is not None:
        query = query.filter(models.Appointment.patient_id == patient_id)
    if status is not None:
        query = query.filter(models.Appointment.status == status)
    if start is not None:
        query = query.filter(models.Appointment.start_time >= ensure_utc(start))
    if end is not None:
        query = query.filter(models.Appointment.start_time < ensure_utc(end))
    return query.order_by(models.Appointment.start_time).offset(skip).limit(limit).all()

def live_appointments_overlapping(
    db: Session,
    doctor_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: Optional[str] = None,
) -> List[models.Appointment]:
    """Live appointments of the doctor whose stored interval touches [start, end)."""
    query = db.query(models.Appointment).filter(
        models.Appointment.doctor_id == doctor_id,
        models.Appointment.status.in_(models.LIVE_STATUSES),
        models.Appointment.start_time < ensure_utc(end),
        models.Appointment.end_time > ensure_utc(start),
    )
    if exclude_appointment_id is not None:
        query = query.filter(models.Appointment.appointment_id != exclude_appointment_id)
    return query.order_by(models.Appointment.start_time).all()

def appointments_on_local_date(
    db: Session,
    doctor_id: int,
    day: date,
    statuses: Iterable[models.AppointmentStatus],
    tz=None,
) -> List[models.Appointment]:
    day_start, day_end = local_day_bounds(day, tz)
    return db.query(models.Appointment).filter(
        models.Appointment.doctor_id == doctor_id,
        models.Appointment.status.in_(list(statuses)),
        models.Appointment.start_time >= day_start,
        models.Appointment.start_time < day_end,
    ).order_by(models.Appointment.start_time).all()

def reminder_candidates(db: Session, window_start: datetime, window_end: datetime, max_reminders: int) -> List[models.Appointment]:
    return db.query(models.Appointment).filter(
        models.Appointment.status.in_([models.AppointmentStatus.scheduled, models.AppointmentStatus.confirmed]),
        models.Appointment.start_time >= ensure_utc(window_start),
        models.Appointment.start_time < ensure_utc(window_end),
        models.Appointment.reminders_sent < max_reminders,
    ).order_by(models.Appointment.start_time).all()


# --- Conditional writes ---
def bump_booking_version(db: Session, doctor_id: int, seen_version: int) -> bool:
    """Advance the doctor's booking version only if nobody else has since.

    Returns False when another booking was admitted after ``seen_version`` was
    read; the caller must then treat its conflict check as stale.
    """
    result = db.execute(
        update(models.Doctor)
        .where(models.Doctor.id == doctor_id, models.Doctor.booking_version == seen_version)
        .values(booking_version=seen_version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

def record_reminder_sent(db: Session, appointment_pk: int, max_reminders: int, now: datetime) -> bool:
    """Increment the reminder counter unless it already reached the cap."""
    result = db.execute(
        update(models.Appointment)
        .where(models.Appointment.id == appointment_pk, models.Appointment.reminders_sent < max_reminders)
        .values(
            reminders_sent=models.Appointment.reminders_sent + 1,
            last_reminder_sent=ensure_utc(now),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

def claim_cancellation_notice(db: Session, appointment_pk: int, now: datetime) -> bool:
    """Mark the cancellation notice as sent; False if another caller already did."""
    result = db.execute(
        update(models.Appointment)
        .where(
            models.Appointment.id == appointment_pk,
            models.Appointment.status == models.AppointmentStatus.cancelled,
            models.Appointment.cancellation_notified_at.is_(None),
        )
        .values(cancellation_notified_at=ensure_utc(now))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

def release_cancellation_notice(db: Session, appointment_pk: int) -> None:
    db.execute(
        update(models.Appointment)
        .where(models.Appointment.id == appointment_pk)
        .values(cancellation_notified_at=None)
        .execution_options(synchronize_session=False)
    )

def unnotified_cancellations(db: Session, cancelled_since: datetime, starting_after: datetime) -> List[models.Appointment]:
    return db.query(models.Appointment).filter(
        models.Appointment.status == models.AppointmentStatus.cancelled,
        models.Appointment.cancellation_notified_at.is_(None),
        models.Appointment.cancelled_at >= ensure_utc(cancelled_since),
        models.Appointment.start_time > ensure_utc(starting_after),
    ).order_by(models.Appointment.cancelled_at).all()
