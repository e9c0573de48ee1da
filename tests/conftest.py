# tests/conftest.py
import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "testing"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CLINIC_TIMEZONE"] = "Asia/Kolkata"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from clinic_scheduler import crud, models, schemas
from clinic_scheduler.database import SessionLocal, create_tables, drop_tables
from clinic_scheduler.errors import NotificationError
from clinic_scheduler.services import schedule_service

IST = ZoneInfo("Asia/Kolkata")

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
SUNDAY_BEFORE = date(2030, 1, 6)


def ist(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute)).replace(tzinfo=IST)


class RecordingNotifier:
    """Stands in for the SendGrid/Twilio notifier and remembers every delivery."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self.fail_all = False
        self.delay = None

    async def deliver(self, event, appointment, patient, doctor=None, context=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_all or appointment.appointment_id in self.fail_for:
            raise NotificationError(f"simulated failure for {appointment.appointment_id}")
        self.sent.append((getattr(event, "value", event), appointment.appointment_id))
        return ["email"]

    def events(self, name):
        return [appointment_id for event, appointment_id in self.sent if event == name]


@pytest.fixture
def db():
    create_tables()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_tables()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def now():
    # Sunday evening before the test Monday
    return ist(SUNDAY_BEFORE, 18, 0)


@pytest.fixture
def doctor(db):
    """Works Monday 09:00-17:00 in 30 minute slots, no breaks."""
    doc = crud.create_doctor(
        db,
        full_name="Atul Dhingra",
        email="doctor@example.com",
        slot_duration=30,
        consultation_fee=500,
        follow_up_fee=300,
    )
    schedule_service.replace_schedule(
        db, doc.id,
        [schemas.WorkingDayBase(day_of_week=0, start_time=time(9, 0), end_time=time(17, 0))],
    )
    db.refresh(doc)
    return doc


@pytest.fixture
def patient(db):
    return crud.create_patient(
        db,
        full_name="Priya Sharma",
        email="priya@example.com",
        phone_number="+919800000000",
        communication_method=models.CommunicationType.email,
    )


@pytest.fixture
def make_appointment(db, doctor, patient):
    """Insert an appointment directly, bypassing admission checks."""
    def _make(start: datetime, minutes: int = 30, status=models.AppointmentStatus.scheduled, patient_obj=None, **fields):
        start_utc = start.astimezone(timezone.utc)
        appointment = models.Appointment(
            appointment_id=crud.generate_appointment_id(start_utc),
            patient_id=(patient_obj or patient).id,
            doctor_id=doctor.id,
            start_time=start_utc,
            end_time=start_utc + timedelta(minutes=minutes),
            duration_minutes=minutes,
            status=status,
            **fields,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def client(db, notifier, now):
    from clinic_scheduler.dependencies import get_notifier, get_now
    from clinic_scheduler.main import app

    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_now] = lambda: now
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
