from datetime import date, datetime, time

import pytest

from dental_scheduler.config import default_working_hours
from dental_scheduler.schemas import BreakInterval, DayHours, WorkingHours
from dental_scheduler.services.slots import (
    WorkingHoursError,
    generate_slot_starts,
    generate_slots,
    is_within_working_hours,
)

MONDAY = date(2026, 10, 19)
SATURDAY = date(2026, 10, 24)
SUNDAY = date(2026, 10, 25)


def _minutes(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


@pytest.mark.parametrize("duration", [15, 30, 60])
def test_slot_count_matches_open_minutes_over_duration(duration):
    hours = default_working_hours().for_date(MONDAY)
    open_minutes = _minutes(hours.open_time, hours.close_time) - sum(
        _minutes(b.start, b.end) for b in hours.breaks
    )

    starts = generate_slot_starts(MONDAY, hours, duration, step_minutes=duration)

    assert len(starts) == -(-open_minutes // duration)


def test_slots_never_touch_a_break_or_run_past_close():
    hours = default_working_hours().for_date(MONDAY)
    lunch_start = datetime.combine(MONDAY, time(12, 0))
    lunch_end = datetime.combine(MONDAY, time(13, 0))
    closing = datetime.combine(MONDAY, time(17, 0))

    starts = generate_slot_starts(MONDAY, hours, 60)

    assert starts == sorted(starts)
    assert starts[0] == datetime.combine(MONDAY, time(9, 0))
    assert datetime.combine(MONDAY, time(11, 0)) in starts
    assert datetime.combine(MONDAY, time(11, 15)) not in starts
    for start in starts:
        end = start.replace(hour=start.hour + 1)
        assert not (start < lunch_end and lunch_start < end)
        assert end <= closing


def test_generation_is_deterministic():
    hours = default_working_hours().for_date(MONDAY)
    assert generate_slot_starts(MONDAY, hours, 45) == generate_slot_starts(MONDAY, hours, 45)


def test_closed_day_and_holiday_have_no_slots():
    working_hours = default_working_hours()
    working_hours.holidays.add(MONDAY)

    assert generate_slot_starts(SUNDAY, working_hours.for_date(SUNDAY), 30) == []
    assert generate_slot_starts(MONDAY, working_hours.for_date(MONDAY), 30) == []


def test_special_hours_override_holiday():
    working_hours = WorkingHours(
        weekly=default_working_hours().weekly,
        holidays={MONDAY},
        special_hours={MONDAY: DayHours(open_time=time(10, 0), close_time=time(12, 0))},
    )

    starts = generate_slot_starts(MONDAY, working_hours.for_date(MONDAY), 60, step_minutes=60)

    assert starts == [datetime.combine(MONDAY, time(10, 0)), datetime.combine(MONDAY, time(11, 0))]


def test_special_closure_reads_as_closed():
    working_hours = default_working_hours()
    working_hours.special_hours[MONDAY] = DayHours(closed=True)

    assert working_hours.for_date(MONDAY) is None
    start = datetime.combine(MONDAY, time(10, 0))
    assert not is_within_working_hours(start, start.replace(hour=11), working_hours)
    assert generate_slots(MONDAY, working_hours, 30, "dr-smith") == []


def test_saturday_short_day():
    hours = default_working_hours().for_date(SATURDAY)
    starts = generate_slot_starts(SATURDAY, hours, 60, step_minutes=60)
    assert [s.hour for s in starts] == [9, 10, 11, 12]


@pytest.mark.parametrize(
    "hours",
    [
        DayHours(open_time=time(17, 0), close_time=time(9, 0)),
        DayHours(open_time=time(9, 0), close_time=time(9, 0)),
        DayHours(
            open_time=time(9, 0),
            close_time=time(17, 0),
            breaks=[BreakInterval(start=time(8, 0), end=time(9, 30))],
        ),
        DayHours(
            open_time=time(9, 0),
            close_time=time(17, 0),
            breaks=[
                BreakInterval(start=time(12, 0), end=time(13, 0)),
                BreakInterval(start=time(12, 30), end=time(13, 30)),
            ],
        ),
        DayHours(open_time=time(9, 0)),
    ],
)
def test_invalid_hours_are_rejected(hours):
    with pytest.raises(WorkingHoursError):
        generate_slot_starts(MONDAY, hours, 30)


def test_generate_slots_labels_practitioner():
    slots = generate_slots(MONDAY, default_working_hours(), 60, "dr-jones", step_minutes=60)
    assert all(slot.practitioner_id == "dr-jones" for slot in slots)
    assert all((slot.end - slot.start).total_seconds() == 3600 for slot in slots)


def test_within_working_hours():
    working_hours = default_working_hours()
    at = lambda h, m=0: datetime.combine(MONDAY, time(h, m))

    assert is_within_working_hours(at(9), at(10), working_hours)
    assert is_within_working_hours(at(16), at(17), working_hours)
    assert not is_within_working_hours(at(8, 45), at(9, 15), working_hours)
    assert not is_within_working_hours(at(11, 30), at(12, 30), working_hours)
    assert not is_within_working_hours(at(16, 30), at(17, 30), working_hours)
    assert not is_within_working_hours(
        datetime.combine(SUNDAY, time(10)), datetime.combine(SUNDAY, time(11)), working_hours
    )
