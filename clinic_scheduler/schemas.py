# clinic_scheduler/schemas.py
from datetime import datetime, date, time
from decimal import Decimal
from typing import List, Optional, Dict

from pydantic import BaseModel, Field, field_validator

from .timeutils import ensure_utc
from .models import (
    AppointmentStatus, AppointmentType, AppointmentPriority, BookingSource,
    PaymentStatus, ExceptionType,
)

# Field names below shadow the date type inside class bodies
DateType = date


# --- Base Schemas ---
class BaseSchema(BaseModel):
    class Config:
        from_attributes = True


# --- Schedule Schemas ---
class WorkingDayBase(BaseSchema):
    day_of_week: int = Field(..., ge=0, le=6)  # 0=Monday, 6=Sunday
    start_time: time
    end_time: time
    is_working: bool = True

class WorkingDayUpdate(BaseSchema):
    start_time: time
    end_time: time
    is_working: bool = True

class WorkingDayResponse(WorkingDayBase):
    id: int

class ScheduleUpdate(BaseSchema):
    working_days: List[WorkingDayBase]
    slot_duration: Optional[int] = None

class BreakTimeBase(BaseSchema):
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: time
    end_time: time
    title: str = Field(default="Break", min_length=1, max_length=100)

class BreakTimeCreate(BreakTimeBase):
    pass

class BreakTimeUpdate(BaseSchema):
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    title: Optional[str] = Field(None, min_length=1, max_length=100)

class BreakTimeResponse(BreakTimeBase):
    id: str

class ScheduleResponse(BaseSchema):
    doctor_id: int
    slot_duration: int
    working_days: List[WorkingDayResponse]
    break_times: List[BreakTimeResponse]


# --- Availability Exception Schemas ---
class AvailabilityExceptionBase(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=100)
    type: ExceptionType = ExceptionType.full_day
    notes: Optional[str] = Field(None, max_length=500)

class AvailabilityExceptionCreate(AvailabilityExceptionBase):
    date: date

class AvailabilityExceptionRangeCreate(AvailabilityExceptionBase):
    start_date: date
    end_date: date

class AvailabilityExceptionUpdate(BaseSchema):
    date: Optional[DateType] = None
    reason: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[ExceptionType] = None
    notes: Optional[str] = Field(None, max_length=500)

class AvailabilityExceptionResponse(AvailabilityExceptionBase):
    id: str
    doctor_id: int
    date: date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class CascadeFailure(BaseSchema):
    appointment_id: str
    error: str

class CascadeReportResponse(BaseSchema):
    date: date
    cancelled: List[str] = []
    failed: List[CascadeFailure] = []
    notified: List[str] = []
    notification_failures: List[CascadeFailure] = []

class AvailabilityExceptionResult(BaseSchema):
    exceptions: List[AvailabilityExceptionResponse]
    cascades: List[CascadeReportResponse] = []

class BulkDeleteRequest(BaseSchema):
    ids: List[str]

class BulkDeleteResponse(BaseSchema):
    removed: int

class AvailabilityExceptionSummary(BaseSchema):
    total: int
    upcoming: int
    past: int
    this_month: int
    by_type: Dict[str, int]
    by_reason: Dict[str, int]


# --- Slot Schemas ---
class SlotResponse(BaseSchema):
    start_time: datetime
    end_time: datetime
    available: bool
    reason: str

class DaySlotsResponse(BaseSchema):
    doctor_id: int
    date: date
    slots: List[SlotResponse]

class AvailabilityDayResponse(BaseSchema):
    date: date
    available: bool
    slots: List[SlotResponse]


# --- Appointment Schemas ---
class AppointmentCreate(BaseSchema):
    patient_id: int
    doctor_id: int
    start_time: datetime
    duration_minutes: Optional[int] = None
    appointment_type: AppointmentType = AppointmentType.consultation
    priority: AppointmentPriority = AppointmentPriority.medium
    booking_source: BookingSource = BookingSource.website
    symptoms: List[str] = []
    notes: Optional[str] = Field(None, max_length=1000)
    special_requirements: Optional[str] = Field(None, max_length=500)
    payment_method: Optional[str] = Field(None, max_length=50)
    # Which half a half-day exception blocks, as clinic-local time
    half_day_reference: Optional[time] = None

    @field_validator("symptoms")
    @classmethod
    def strip_symptoms(cls, v):
        return [s.strip() for s in v if s and s.strip()]

class AppointmentDetailsUpdate(BaseSchema):
    appointment_type: Optional[AppointmentType] = None
    priority: Optional[AppointmentPriority] = None
    symptoms: Optional[List[str]] = None
    notes: Optional[str] = Field(None, max_length=1000)
    special_requirements: Optional[str] = Field(None, max_length=500)

class AppointmentStatusUpdate(BaseSchema):
    status: AppointmentStatus
    reason: Optional[str] = Field(None, max_length=500)

class AppointmentCancel(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)

class AppointmentReschedule(BaseSchema):
    start_time: datetime
    half_day_reference: Optional[time] = None

class AppointmentResponse(BaseSchema):
    appointment_id: str
    patient_id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    appointment_type: AppointmentType
    priority: AppointmentPriority
    booking_source: BookingSource
    status: AppointmentStatus
    symptoms: Optional[List[str]] = None
    notes: Optional[str] = None
    special_requirements: Optional[str] = None
    payment_status: PaymentStatus
    payment_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    reminders_sent: int
    last_reminder_sent: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator(
        "start_time", "end_time", "last_reminder_sent", "confirmed_at", "started_at",
        "completed_at", "cancelled_at", "created_at", "updated_at",
    )
    @classmethod
    def as_utc(cls, v):
        return ensure_utc(v)


# --- Reminder Schemas ---
class ReminderResult(BaseSchema):
    appointment_id: str
    sent: bool
    reason: str
    reminders_sent: int

class SweepSummaryResponse(BaseSchema):
    window_start: datetime
    window_end: datetime
    total: int
    sent: int
    skipped: int
    failed: int


# --- Health Schemas ---
class HealthResponse(BaseSchema):
    status: str
    database: str
    timestamp: datetime
    version: str
