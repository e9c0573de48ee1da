# clinic_scheduler/routers/slots.py
from datetime import date, datetime, time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_now
from ..services import slot_service

router = APIRouter(
    prefix="/slots",
    tags=["Slots"],
    responses={404: {"description": "Not found"}},
)


@router.get("/{doctor_id}/{slot_date}", response_model=schemas.DaySlotsResponse)
def read_day_slots(
    doctor_id: int,
    slot_date: date,
    half_day_reference: Optional[time] = Query(None, description="Clinic-local time inside the half a half-day exception blocks"),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    slots = slot_service.slots_for_doctor(db, doctor_id, slot_date, now, half_day_reference)
    return schemas.DaySlotsResponse.model_validate(
        {"doctor_id": doctor_id, "date": slot_date, "slots": slots},
        from_attributes=True,
    )


@router.get("/{doctor_id}", response_model=List[schemas.AvailabilityDayResponse])
def read_availability(
    doctor_id: int,
    start_date: date,
    end_date: date,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Per-day slots for an inclusive date range."""
    days = slot_service.availability_range(db, doctor_id, start_date, end_date, now)
    return [schemas.AvailabilityDayResponse.model_validate(day, from_attributes=True) for day in days]
