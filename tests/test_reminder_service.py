# tests/test_reminder_service.py
import asyncio
from datetime import timedelta

import pytest

from clinic_scheduler import crud, models
from clinic_scheduler.config import get_settings
from clinic_scheduler.errors import NotificationError, SweepInProgress
from clinic_scheduler.services import reminder_service
from clinic_scheduler.timeutils import ensure_utc
from conftest import IST, MONDAY, SUNDAY_BEFORE, TUESDAY, ist

S = models.AppointmentStatus


def _decide(appointment, patient, now):
    return reminder_service.reminder_decision(appointment, patient, now, max_reminders=3)


@pytest.mark.asyncio
async def test_reminder_fires_inside_the_lead_time(db, patient, notifier, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    now = ist(SUNDAY_BEFORE, 11, 0)  # 23 hours ahead

    outcome = await reminder_service.send_reminder(db, appointment.appointment_id, now, notifier)

    assert outcome.sent is True
    assert outcome.reason == "due"
    assert outcome.reminders_sent == 1
    db.refresh(appointment)
    assert appointment.reminders_sent == 1
    assert ensure_utc(appointment.last_reminder_sent) == now
    assert notifier.events("reminder") == [appointment.appointment_id]


def test_decision_respects_tolerance(patient, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))

    assert _decide(appointment, patient, ist(MONDAY, 10, 0) - timedelta(hours=25)).due is True
    too_early = _decide(appointment, patient, ist(MONDAY, 10, 0) - timedelta(hours=25, minutes=30))
    assert too_early.due is False
    assert too_early.reason == "too_early"


def test_decision_uses_the_patients_lead_time(db, patient, make_appointment):
    patient.reminder_lead_hours = 2
    db.commit()
    appointment = make_appointment(ist(MONDAY, 10, 0))

    assert _decide(appointment, patient, ist(MONDAY, 6, 0)).reason == "too_early"
    assert _decide(appointment, patient, ist(MONDAY, 7, 30)).due is True


def test_decision_skips_opted_out_patients(db, patient, now, make_appointment):
    patient.reminders_enabled = False
    db.commit()
    appointment = make_appointment(ist(MONDAY, 10, 0))
    assert _decide(appointment, patient, now).reason == "opted_out"


def test_decision_stops_at_max_reminders(patient, now, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0), reminders_sent=3)
    assert _decide(appointment, patient, now).reason == "max_reminders"


@pytest.mark.parametrize("status", [S.cancelled, S.completed, S.no_show, S.in_progress])
def test_decision_ignores_closed_appointments(patient, now, make_appointment, status):
    appointment = make_appointment(ist(MONDAY, 10, 0), status=status)
    assert _decide(appointment, patient, now).reason == "status"


def test_decision_skips_appointments_already_started(patient, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    assert _decide(appointment, patient, ist(MONDAY, 10, 5)).reason == "started"


@pytest.mark.asyncio
async def test_failed_delivery_leaves_the_counter_alone(db, notifier, now, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    notifier.fail_all = True

    with pytest.raises(NotificationError):
        await reminder_service.send_reminder(db, appointment.appointment_id, now, notifier)

    db.refresh(appointment)
    assert appointment.reminders_sent == 0
    assert appointment.last_reminder_sent is None


@pytest.mark.asyncio
async def test_slow_delivery_times_out(db, notifier, now, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    notifier.delay = 0.5

    with pytest.raises(asyncio.TimeoutError):
        await reminder_service.send_reminder(db, appointment.appointment_id, now, notifier, timeout=0.01)

    db.refresh(appointment)
    assert appointment.reminders_sent == 0


@pytest.mark.asyncio
async def test_counter_never_exceeds_the_cap(db, notifier, now, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0), reminders_sent=2)

    await reminder_service.send_reminder(db, appointment.appointment_id, now, notifier)
    outcome = await reminder_service.send_reminder(db, appointment.appointment_id, now, notifier)

    assert outcome.sent is False
    assert outcome.reason == "max_reminders"
    db.refresh(appointment)
    assert appointment.reminders_sent == 3
    assert crud.record_reminder_sent(db, appointment.id, 3, now) is False


# --- Sweep ---
def test_sweep_window_is_the_next_local_day(now):
    start, end = reminder_service.sweep_window(now, IST)
    assert start == ist(MONDAY, 0, 0)
    assert end == ist(TUESDAY, 0, 0)


@pytest.mark.asyncio
async def test_sweep_reminds_tomorrows_appointments_only(db, doctor, patient, notifier, now, make_appointment):
    morning = make_appointment(ist(MONDAY, 9, 0))
    evening = make_appointment(ist(MONDAY, 16, 30))
    make_appointment(ist(TUESDAY, 9, 0))
    make_appointment(ist(MONDAY, 11, 0), status=S.cancelled)

    summary = await reminder_service.run_reminder_sweep(db, now, notifier, tz=IST)

    assert (summary.total, summary.sent, summary.skipped, summary.failed) == (2, 2, 0, 0)
    assert notifier.events("reminder") == [morning.appointment_id, evening.appointment_id]


@pytest.mark.asyncio
async def test_sweep_continues_past_a_failure(db, doctor, patient, notifier, now, make_appointment):
    first = make_appointment(ist(MONDAY, 9, 0))
    broken = make_appointment(ist(MONDAY, 10, 0))
    last = make_appointment(ist(MONDAY, 11, 0))
    notifier.fail_for.add(broken.appointment_id)

    summary = await reminder_service.run_reminder_sweep(db, now, notifier, tz=IST)

    assert (summary.total, summary.sent, summary.failed) == (3, 2, 1)
    for appointment, expected in ((first, 1), (broken, 0), (last, 1)):
        db.refresh(appointment)
        assert appointment.reminders_sent == expected


@pytest.mark.asyncio
async def test_sweep_counts_timeouts_as_failures(db, doctor, patient, notifier, now, make_appointment):
    make_appointment(ist(MONDAY, 9, 0))
    notifier.delay = 0.5
    settings = get_settings().model_copy(update={"reminder_send_timeout_seconds": 0.01})

    summary = await reminder_service.run_reminder_sweep(db, now, notifier, settings=settings, tz=IST)

    assert summary.failed == 1
    assert summary.sent == 0


@pytest.mark.asyncio
async def test_sweep_skips_opted_out_patients(db, doctor, patient, notifier, now, make_appointment):
    quiet = crud.create_patient(db, full_name="Rahul Verma", email="rahul@example.com", reminders_enabled=False)
    make_appointment(ist(MONDAY, 9, 0), patient_obj=quiet)
    make_appointment(ist(MONDAY, 10, 0))

    summary = await reminder_service.run_reminder_sweep(db, now, notifier, tz=IST)

    assert (summary.total, summary.sent, summary.skipped) == (2, 1, 1)


@pytest.mark.asyncio
async def test_overlapping_sweep_is_refused(db, notifier, now):
    async with reminder_service._sweep_lock:
        assert reminder_service.sweep_in_progress()
        with pytest.raises(SweepInProgress):
            await reminder_service.run_reminder_sweep(db, now, notifier, tz=IST)
    assert not reminder_service.sweep_in_progress()
