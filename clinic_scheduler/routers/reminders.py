# clinic_scheduler/routers/reminders.py
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_notifier, get_now
from ..services import reminder_service

router = APIRouter(
    prefix="/reminders",
    tags=["Reminders"],
)


@router.post("/sweep", response_model=schemas.SweepSummaryResponse)
async def run_sweep(
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier=Depends(get_notifier),
):
    """Run the daily reminder sweep now. 409 while another sweep is running."""
    summary = await reminder_service.run_reminder_sweep(db, now, notifier)
    return schemas.SweepSummaryResponse.model_validate(summary, from_attributes=True)
