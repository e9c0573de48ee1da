# tests/test_lifecycle_service.py
import pytest

from clinic_scheduler import models
from clinic_scheduler.errors import IllegalTransition, NotFound
from clinic_scheduler.services import cascade_service, lifecycle_service
from clinic_scheduler.services.notification_service import NotificationEvent
from clinic_scheduler.timeutils import ensure_utc
from conftest import MONDAY, ist

S = models.AppointmentStatus

ALLOWED = [
    (S.scheduled, S.confirmed),
    (S.scheduled, S.cancelled),
    (S.confirmed, S.in_progress),
    (S.confirmed, S.cancelled),
    (S.in_progress, S.completed),
]


@pytest.mark.parametrize("current,target", ALLOWED)
def test_allowed_transitions(current, target):
    assert lifecycle_service.can_transition(current, target)


@pytest.mark.parametrize("terminal", [S.completed, S.cancelled, S.no_show])
@pytest.mark.parametrize("target", list(S))
def test_terminal_statuses_have_no_way_out(terminal, target):
    assert not lifecycle_service.can_transition(terminal, target)


@pytest.mark.parametrize(
    "current,target",
    [(S.scheduled, S.in_progress), (S.scheduled, S.completed), (S.in_progress, S.cancelled), (S.confirmed, S.scheduled)],
)
def test_skipping_steps_is_rejected(doctor, now, make_appointment, current, target):
    appointment = make_appointment(ist(MONDAY, 10, 0), status=current)
    with pytest.raises(IllegalTransition) as exc_info:
        lifecycle_service.apply_transition(appointment, target, now)
    assert exc_info.value.current == current.value
    assert exc_info.value.attempted == target.value
    assert appointment.status == current


def test_transition_timestamps(doctor, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))

    lifecycle_service.apply_transition(appointment, S.confirmed, ist(MONDAY, 8, 0))
    lifecycle_service.apply_transition(appointment, S.in_progress, ist(MONDAY, 10, 2))
    event = lifecycle_service.apply_transition(appointment, S.completed, ist(MONDAY, 10, 31))

    assert event == NotificationEvent.status_change
    assert ensure_utc(appointment.confirmed_at) == ist(MONDAY, 8, 0)
    assert ensure_utc(appointment.started_at) == ist(MONDAY, 10, 2)
    assert ensure_utc(appointment.completed_at) == ist(MONDAY, 10, 31)
    assert appointment.cancelled_at is None


def test_no_show_before_start_is_rejected(doctor, now, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    with pytest.raises(IllegalTransition, match="before its start time"):
        lifecycle_service.apply_transition(appointment, S.no_show, now)


def test_no_show_after_start_is_allowed(doctor, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0), status=S.confirmed)
    lifecycle_service.apply_transition(appointment, S.no_show, ist(MONDAY, 10, 20))
    assert appointment.status == S.no_show


@pytest.mark.asyncio
async def test_cancel_sets_timestamp_reason_and_notifies(db, doctor, now, notifier, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))

    cancelled = await lifecycle_service.cancel_appointment(
        db, appointment.appointment_id, now, notifier, reason="Patient travelling"
    )

    assert cancelled.status == S.cancelled
    assert ensure_utc(cancelled.cancelled_at) == now
    assert cancelled.cancellation_reason == "Patient travelling"
    assert cancelled.cancellation_notified_at is not None
    assert notifier.events("cancellation") == [appointment.appointment_id]


@pytest.mark.asyncio
async def test_cancelling_twice_notifies_once(db, doctor, now, notifier, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    await lifecycle_service.cancel_appointment(db, appointment.appointment_id, now, notifier)

    with pytest.raises(IllegalTransition):
        await lifecycle_service.cancel_appointment(db, appointment.appointment_id, now, notifier)
    assert await lifecycle_service.deliver_event(
        db, appointment, NotificationEvent.cancellation, notifier, now
    ) is False
    assert len(notifier.events("cancellation")) == 1


@pytest.mark.asyncio
async def test_failed_cancellation_notice_is_released_for_retry(db, doctor, now, notifier, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    notifier.fail_all = True

    cancelled = await lifecycle_service.cancel_appointment(db, appointment.appointment_id, now, notifier)
    assert cancelled.status == S.cancelled
    assert cancelled.cancellation_notified_at is None

    notifier.fail_all = False
    result = await cascade_service.redeliver_cancellation_notices(db, now, notifier)
    assert result == {"total": 1, "sent": 1, "failed": 0}
    assert notifier.events("cancellation") == [appointment.appointment_id]

    again = await cascade_service.redeliver_cancellation_notices(db, now, notifier)
    assert again["total"] == 0


@pytest.mark.asyncio
async def test_status_change_is_notified(db, doctor, now, notifier, make_appointment):
    appointment = make_appointment(ist(MONDAY, 10, 0))
    confirmed = await lifecycle_service.transition_appointment(db, appointment.appointment_id, S.confirmed, now, notifier)
    assert confirmed.status == S.confirmed
    assert notifier.events("status_change") == [appointment.appointment_id]


@pytest.mark.asyncio
async def test_transition_of_unknown_appointment(db, now, notifier):
    with pytest.raises(NotFound):
        await lifecycle_service.transition_appointment(db, "APT-missing", S.confirmed, now, notifier)


def test_ensure_editable(doctor, make_appointment):
    lifecycle_service.ensure_editable(make_appointment(ist(MONDAY, 10, 0)), "update")
    with pytest.raises(IllegalTransition, match="Cannot update a completed appointment"):
        lifecycle_service.ensure_editable(make_appointment(ist(MONDAY, 11, 0), status=S.completed), "update")
