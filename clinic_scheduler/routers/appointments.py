# clinic_scheduler/routers/appointments.py
import asyncio
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..config import get_settings
from ..database import get_db
from ..dependencies import get_notifier, get_now
from ..errors import NotificationError
from ..limiter import limiter
from ..services import booking_service, lifecycle_service, reminder_service

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


@router.post("", response_model=schemas.AppointmentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_settings().booking_rate_limit)
async def create_appointment(
    request: Request,
    payload: schemas.AppointmentCreate,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    """Book an appointment. 409 when the slot is taken or outside the doctor's hours."""
    return await booking_service.book_appointment(db, payload, now, notifier)


@router.get("", response_model=List[schemas.AppointmentResponse])
def list_appointments(
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status_filter: Optional[models.AppointmentStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return crud.list_appointments(db, doctor_id, patient_id, status_filter, start, end, skip, limit)


@router.get("/{appointment_id}", response_model=schemas.AppointmentResponse)
def read_appointment(appointment_id: str, db: Session = Depends(get_db)):
    return crud.require_appointment(db, appointment_id)


@router.patch("/{appointment_id}", response_model=schemas.AppointmentResponse)
def update_appointment(
    appointment_id: str,
    payload: schemas.AppointmentDetailsUpdate,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return booking_service.update_appointment_details(db, appointment_id, payload, now)


@router.patch("/{appointment_id}/status", response_model=schemas.AppointmentResponse)
async def update_appointment_status(
    appointment_id: str,
    payload: schemas.AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    return await lifecycle_service.transition_appointment(
        db, appointment_id, payload.status, now, notifier, reason=payload.reason
    )


@router.post("/{appointment_id}/cancel", response_model=schemas.AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    payload: Optional[schemas.AppointmentCancel] = None,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    reason = payload.reason if payload else None
    return await lifecycle_service.cancel_appointment(db, appointment_id, now, notifier, reason=reason)


@router.post("/{appointment_id}/reschedule", response_model=schemas.AppointmentResponse)
async def reschedule_appointment(
    appointment_id: str,
    payload: schemas.AppointmentReschedule,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    return await booking_service.reschedule_appointment(
        db, appointment_id, payload.start_time, now, notifier,
        half_day_reference=payload.half_day_reference,
    )


@router.post("/{appointment_id}/reminders", response_model=schemas.ReminderResult)
async def send_appointment_reminder(
    appointment_id: str,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    """Send a reminder now if the appointment is eligible for one."""
    try:
        outcome = await reminder_service.send_reminder(db, appointment_id, now, notifier)
    except (NotificationError, asyncio.TimeoutError) as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Reminder could not be delivered: {str(e) or 'timed out'}",
        )
    return schemas.ReminderResult.model_validate(outcome, from_attributes=True)
