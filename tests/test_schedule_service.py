# tests/test_schedule_service.py
from datetime import time

import pytest

from clinic_scheduler import schemas
from clinic_scheduler.errors import InvalidScheduleConfig, NotFound
from clinic_scheduler.services import schedule_service
from conftest import MONDAY, TUESDAY


def _day(day_of_week, start=time(9, 0), end=time(17, 0), is_working=True):
    return schemas.WorkingDayBase(day_of_week=day_of_week, start_time=start, end_time=end, is_working=is_working)


def test_replace_schedule_sets_days_and_slot_duration(db, doctor):
    updated = schedule_service.replace_schedule(
        db, doctor.id, [_day(0, time(10, 0), time(14, 0)), _day(2)], slot_duration=20
    )

    assert [(wd.day_of_week, wd.start_time) for wd in updated.working_days] == [(0, time(10, 0)), (2, time(9, 0))]
    assert updated.slot_duration == 20


def test_days_left_out_are_removed(db, doctor):
    updated = schedule_service.replace_schedule(db, doctor.id, [_day(1)])
    assert [wd.day_of_week for wd in updated.working_days] == [1]
    assert schedule_service.working_day_for(updated, MONDAY) is None
    assert schedule_service.working_day_for(updated, TUESDAY).day_of_week == 1


@pytest.mark.parametrize(
    "start,end",
    [(time(17, 0), time(9, 0)), (time(9, 0), time(9, 0))],
)
def test_end_must_follow_start(db, doctor, start, end):
    with pytest.raises(InvalidScheduleConfig, match="must be after start time"):
        schedule_service.replace_schedule(db, doctor.id, [_day(0, start, end)])


def test_non_working_day_skips_window_validation(db, doctor):
    updated = schedule_service.replace_schedule(db, doctor.id, [_day(6, time(0, 0), time(0, 0), is_working=False)])
    assert updated.working_days[0].is_working is False


@pytest.mark.parametrize("minutes", [0, 10, 14, 121, 240])
def test_slot_duration_bounds(db, doctor, minutes):
    with pytest.raises(InvalidScheduleConfig, match="Slot duration"):
        schedule_service.replace_schedule(db, doctor.id, [_day(0)], slot_duration=minutes)


@pytest.mark.parametrize("minutes", [15, 30, 120])
def test_slot_duration_accepted(db, doctor, minutes):
    assert schedule_service.replace_schedule(db, doctor.id, [_day(0)], slot_duration=minutes).slot_duration == minutes


def test_duplicate_day_is_rejected(db, doctor):
    with pytest.raises(InvalidScheduleConfig, match="more than once"):
        schedule_service.replace_schedule(db, doctor.id, [_day(0), _day(0, time(10, 0), time(12, 0))])


def test_invalid_schedule_leaves_the_old_one(db, doctor):
    with pytest.raises(InvalidScheduleConfig):
        schedule_service.replace_schedule(db, doctor.id, [_day(0, time(12, 0), time(8, 0))])
    db.refresh(doctor)
    assert doctor.working_days[0].end_time == time(17, 0)


def test_update_single_day(db, doctor):
    updated = schedule_service.update_working_day(
        db, doctor.id, 3, schemas.WorkingDayUpdate(start_time=time(8, 0), end_time=time(12, 0))
    )
    assert [wd.day_of_week for wd in updated.working_days] == [0, 3]

    with pytest.raises(InvalidScheduleConfig):
        schedule_service.update_working_day(
            db, doctor.id, 7, schemas.WorkingDayUpdate(start_time=time(8, 0), end_time=time(12, 0))
        )


def test_schedule_of_unknown_doctor(db):
    with pytest.raises(NotFound):
        schedule_service.get_schedule(db, 12345)


# --- Breaks ---
def test_break_lifecycle(db, doctor):
    lunch = schedule_service.add_break(
        db, doctor.id, schemas.BreakTimeCreate(day_of_week=0, start_time=time(13, 0), end_time=time(14, 0), title="Lunch")
    )
    assert len(lunch.id) == 32
    assert [b.title for b in schedule_service.breaks_for(doctor, MONDAY)] == ["Lunch"]

    moved = schedule_service.update_break(
        db, doctor.id, lunch.id, schemas.BreakTimeUpdate(start_time=time(12, 30), end_time=time(13, 15))
    )
    assert (moved.start_time, moved.end_time, moved.title) == (time(12, 30), time(13, 15), "Lunch")

    schedule_service.remove_break(db, doctor.id, lunch.id)
    db.refresh(doctor)
    assert schedule_service.breaks_for(doctor, MONDAY) == []


def test_break_window_must_be_valid(db, doctor):
    with pytest.raises(InvalidScheduleConfig):
        schedule_service.add_break(
            db, doctor.id, schemas.BreakTimeCreate(day_of_week=0, start_time=time(14, 0), end_time=time(13, 0))
        )

    lunch = schedule_service.add_break(
        db, doctor.id, schemas.BreakTimeCreate(day_of_week=0, start_time=time(13, 0), end_time=time(14, 0))
    )
    with pytest.raises(InvalidScheduleConfig):
        schedule_service.update_break(db, doctor.id, lunch.id, schemas.BreakTimeUpdate(end_time=time(12, 0)))


def test_unknown_break(db, doctor):
    with pytest.raises(NotFound, match="Break not found"):
        schedule_service.remove_break(db, doctor.id, "missing")
    with pytest.raises(NotFound):
        schedule_service.update_break(db, doctor.id, "missing", schemas.BreakTimeUpdate(title="Tea"))


def test_null_fields_keep_the_stored_break_values(db, doctor):
    lunch = schedule_service.add_break(
        db, doctor.id, schemas.BreakTimeCreate(day_of_week=0, start_time=time(13, 0), end_time=time(14, 0), title="Lunch")
    )

    updated = schedule_service.update_break(
        db, doctor.id, lunch.id,
        schemas.BreakTimeUpdate(day_of_week=None, start_time=None, end_time=time(14, 30)),
    )

    assert (updated.day_of_week, updated.start_time, updated.end_time) == (0, time(13, 0), time(14, 30))
