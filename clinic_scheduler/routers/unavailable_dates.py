# clinic_scheduler/routers/unavailable_dates.py
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..database import get_db
from ..dependencies import get_notifier, get_now
from ..services import availability_service
from ..timeutils import local_date

router = APIRouter(
    prefix="/doctors",
    tags=["Unavailable Dates"],
    responses={404: {"description": "Not found"}},
)


def _result(exceptions, reports) -> schemas.AvailabilityExceptionResult:
    return schemas.AvailabilityExceptionResult.model_validate(
        {"exceptions": exceptions, "cascades": [r for r in reports if r is not None]},
        from_attributes=True,
    )


@router.get("/{doctor_id}/unavailable-dates", response_model=List[schemas.AvailabilityExceptionResponse])
def list_unavailable_dates(
    doctor_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    return availability_service.list_exceptions(db, doctor_id, start_date, end_date)


@router.get("/{doctor_id}/unavailable-dates/summary", response_model=schemas.AvailabilityExceptionSummary)
def unavailable_dates_summary(doctor_id: int, db: Session = Depends(get_db), now: datetime = Depends(get_now)):
    doctor = crud.require_doctor(db, doctor_id)
    return availability_service.exception_summary(doctor, local_date(now))


@router.post("/{doctor_id}/unavailable-dates", response_model=schemas.AvailabilityExceptionResult,
             status_code=status.HTTP_201_CREATED)
async def add_unavailable_date(
    doctor_id: int,
    payload: schemas.AvailabilityExceptionCreate,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    """Mark a date unavailable and cancel the doctor's scheduled/confirmed appointments on it."""
    exception, report = await availability_service.add_exception(db, doctor_id, payload, now, notifier)
    return _result([exception], [report])


@router.post("/{doctor_id}/unavailable-dates/range", response_model=schemas.AvailabilityExceptionResult,
             status_code=status.HTTP_201_CREATED)
async def add_unavailable_range(
    doctor_id: int,
    payload: schemas.AvailabilityExceptionRangeCreate,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    exceptions, reports = await availability_service.add_exception_range(db, doctor_id, payload, now, notifier)
    return _result(exceptions, reports)


@router.post("/{doctor_id}/unavailable-dates/bulk-delete", response_model=schemas.BulkDeleteResponse)
def bulk_delete_unavailable_dates(doctor_id: int, payload: schemas.BulkDeleteRequest, db: Session = Depends(get_db)):
    removed = availability_service.bulk_remove_exceptions(db, doctor_id, payload.ids)
    return {"removed": removed}


@router.put("/{doctor_id}/unavailable-dates/{exception_id}", response_model=schemas.AvailabilityExceptionResult)
async def update_unavailable_date(
    doctor_id: int,
    exception_id: str,
    payload: schemas.AvailabilityExceptionUpdate,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    exception, report = await availability_service.update_exception(db, doctor_id, exception_id, payload, now, notifier)
    return _result([exception], [report])


@router.delete("/{doctor_id}/unavailable-dates/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_unavailable_date(doctor_id: int, exception_id: str, db: Session = Depends(get_db)):
    availability_service.remove_exception(db, doctor_id, exception_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
