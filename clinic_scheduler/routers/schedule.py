# clinic_scheduler/routers/schedule.py
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..services import schedule_service

router = APIRouter(
    prefix="/doctors",
    tags=["Doctor Schedule"],
    responses={404: {"description": "Not found"}},
)


def _schedule_response(doctor: models.Doctor) -> schemas.ScheduleResponse:
    return schemas.ScheduleResponse.model_validate(
        {
            "doctor_id": doctor.id,
            "slot_duration": doctor.slot_duration,
            "working_days": doctor.working_days,
            "break_times": doctor.break_times,
        },
        from_attributes=True,
    )


@router.get("/{doctor_id}/schedule", response_model=schemas.ScheduleResponse)
def read_schedule(doctor_id: int, db: Session = Depends(get_db)):
    return _schedule_response(schedule_service.get_schedule(db, doctor_id))


@router.put("/{doctor_id}/schedule", response_model=schemas.ScheduleResponse)
def replace_schedule(doctor_id: int, payload: schemas.ScheduleUpdate, db: Session = Depends(get_db)):
    """Replace the whole weekly schedule. Days left out become non-working."""
    doctor = schedule_service.replace_schedule(db, doctor_id, payload.working_days, payload.slot_duration)
    return _schedule_response(doctor)


@router.put("/{doctor_id}/schedule/{day_of_week}", response_model=schemas.ScheduleResponse)
def update_day(doctor_id: int, day_of_week: int, payload: schemas.WorkingDayUpdate, db: Session = Depends(get_db)):
    doctor = schedule_service.update_working_day(db, doctor_id, day_of_week, payload)
    return _schedule_response(doctor)


@router.post("/{doctor_id}/breaks", response_model=schemas.BreakTimeResponse, status_code=status.HTTP_201_CREATED)
def add_break(doctor_id: int, payload: schemas.BreakTimeCreate, db: Session = Depends(get_db)):
    return schedule_service.add_break(db, doctor_id, payload)


@router.put("/{doctor_id}/breaks/{break_id}", response_model=schemas.BreakTimeResponse)
def update_break(doctor_id: int, break_id: str, payload: schemas.BreakTimeUpdate, db: Session = Depends(get_db)):
    return schedule_service.update_break(db, doctor_id, break_id, payload)


@router.delete("/{doctor_id}/breaks/{break_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_break(doctor_id: int, break_id: str, db: Session = Depends(get_db)):
    schedule_service.remove_break(db, doctor_id, break_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
