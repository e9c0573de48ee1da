# clinic_scheduler/models.py
import enum
import uuid

from sqlalchemy import (
    Column, Integer, String, DateTime, Time, ForeignKey, Text, Date,
    Enum as SQLAlchemyEnum, Boolean, JSON, Numeric, Index,
    UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


def _uuid_hex() -> str:
    return uuid.uuid4().hex


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"

# Statuses that still occupy the doctor's calendar
LIVE_STATUSES = (
    AppointmentStatus.scheduled,
    AppointmentStatus.confirmed,
    AppointmentStatus.in_progress,
)

TERMINAL_STATUSES = (
    AppointmentStatus.completed,
    AppointmentStatus.cancelled,
    AppointmentStatus.no_show,
)

class AppointmentType(str, enum.Enum):
    consultation = "consultation"
    follow_up = "follow-up"
    emergency = "emergency"
    routine_checkup = "routine-checkup"
    procedure = "procedure"

class AppointmentPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"

class BookingSource(str, enum.Enum):
    website = "website"
    mobile_app = "mobile-app"
    whatsapp = "whatsapp"
    phone_call = "phone-call"
    email = "email"
    sms = "sms"
    in_person = "in-person"
    third_party = "third-party"
    referral = "referral"
    qr_code = "qr-code"
    social_media = "social-media"
    voice_bot = "voice-bot"
    api = "api"

class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"

class CommunicationType(str, enum.Enum):
    whatsapp = "whatsapp"
    email = "email"
    sms = "sms"
    phone = "phone"

class ExceptionType(str, enum.Enum):
    full_day = "full-day"
    half_day = "half-day"
    morning = "morning"
    afternoon = "afternoon"

class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BULK_ACTION = "BULK_ACTION"


class Doctor(Base):
    """Bookable practitioner. Owns its weekly schedule, breaks and exceptions."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    doctor_code = Column(String(32), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone_number = Column(String(20), nullable=True)
    specialization = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    slot_duration = Column(Integer, nullable=False, default=30)  # minutes, 15-120
    # Bumped by every admitted booking; guards the conditional write
    booking_version = Column(Integer, nullable=False, default=0)

    consultation_fee = Column(Numeric(10, 2), nullable=False, default=0)
    follow_up_fee = Column(Numeric(10, 2), nullable=True)
    emergency_fee = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    working_days = relationship(
        "WorkingDay", back_populates="doctor",
        cascade="all, delete-orphan", order_by="WorkingDay.day_of_week",
    )
    break_times = relationship(
        "BreakTime", back_populates="doctor",
        cascade="all, delete-orphan", order_by="BreakTime.start_time",
    )
    availability_exceptions = relationship(
        "AvailabilityException", back_populates="doctor",
        cascade="all, delete-orphan", order_by="AvailabilityException.date",
    )
    appointments = relationship("Appointment", back_populates="doctor")

class WorkingDay(Base):
    """Recurring working hours for one day of the week"""
    __tablename__ = "working_days"
    __table_args__ = (
        UniqueConstraint('doctor_id', 'day_of_week', name='uq_doctor_day'),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0=Monday, 6=Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_working = Column(Boolean, default=True, nullable=False)

    doctor = relationship("Doctor", back_populates="working_days")

class BreakTime(Base):
    """Recurring break window tied to a day of the week"""
    __tablename__ = "break_times"
    __table_args__ = (
        Index('idx_break_doctor_day', 'doctor_id', 'day_of_week'),
    )

    id = Column(String(32), primary_key=True, default=_uuid_hex)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    title = Column(String(100), nullable=False, default="Break")

    doctor = relationship("Doctor", back_populates="break_times")

class AvailabilityException(Base):
    """Dated override that removes or narrows one day of a doctor's schedule"""
    __tablename__ = "availability_exceptions"
    __table_args__ = (
        UniqueConstraint('doctor_id', 'date', name='uq_doctor_exception_date'),
    )

    id = Column(String(32), primary_key=True, default=_uuid_hex)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    reason = Column(String(100), nullable=False)
    type = Column(SQLAlchemyEnum(ExceptionType, name='exception_type'), default=ExceptionType.full_day, nullable=False)
    notes = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor", back_populates="availability_exceptions")

class Patient(Base):
    """Directory record used for booking validation and reminder preferences"""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    patient_code = Column(String(32), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone_number = Column(String(20), nullable=True)
    whatsapp_number = Column(String(20), nullable=True)
    communication_method = Column(SQLAlchemyEnum(CommunicationType, name='communication_type'), default=CommunicationType.email, nullable=False)

    # Reminder preferences
    reminders_enabled = Column(Boolean, default=True, nullable=False)
    reminder_lead_hours = Column(Integer, default=24, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointments = relationship("Appointment", back_populates="patient")

class Appointment(Base):
    """Booked interval of a doctor's calendar and its lifecycle state"""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_doctor_start', 'doctor_id', 'start_time'),
        Index('idx_appointments_doctor_end', 'doctor_id', 'end_time'),
        Index('idx_appointments_status_date', 'status', 'start_time'),
        Index('idx_appointments_patient_date', 'patient_id', 'start_time'),
    )

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(String(40), unique=True, index=True, nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)

    # Appointment timing (UTC)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)

    # Appointment details
    appointment_type = Column(SQLAlchemyEnum(AppointmentType, name='appointment_type'), default=AppointmentType.consultation, nullable=False)
    priority = Column(SQLAlchemyEnum(AppointmentPriority, name='appointment_priority'), default=AppointmentPriority.medium, nullable=False)
    booking_source = Column(SQLAlchemyEnum(BookingSource, name='booking_source'), default=BookingSource.website, nullable=False)
    symptoms = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    special_requirements = Column(Text, nullable=True)

    # Status and workflow
    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status'), default=AppointmentStatus.scheduled, nullable=False, index=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancellation_notified_at = Column(DateTime(timezone=True), nullable=True)

    # Billing
    payment_status = Column(SQLAlchemyEnum(PaymentStatus, name='payment_status'), default=PaymentStatus.pending, nullable=False)
    payment_amount = Column(Numeric(10, 2), nullable=True)
    payment_method = Column(String(50), nullable=True)

    # Reminders
    reminders_sent = Column(Integer, default=0, nullable=False)
    last_reminder_sent = Column(DateTime(timezone=True), nullable=True)

    # Metadata
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")

class AuditLog(Base):
    """Audit trail for schedule, exception and appointment mutations"""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('idx_audit_action_date', 'action', 'timestamp'),
        Index('idx_audit_resource', 'resource_type', 'resource_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), nullable=True)
    action = Column(SQLAlchemyEnum(AuditAction, name='audit_action'), nullable=False)
    category = Column(String(50), nullable=False, default="GENERAL", index=True)
    severity = Column(String(20), default="INFO", index=True)  # INFO, WARN, ERROR, CRITICAL
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(64), nullable=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
