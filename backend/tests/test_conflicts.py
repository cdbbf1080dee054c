from datetime import datetime, timedelta

import pytest

from dental_scheduler.schemas import AppointmentOut
from dental_scheduler.services.conflicts import Candidate, detect_conflicts, workload_warnings

DAY = datetime(2026, 10, 20)


def _appointment(start: datetime, minutes: int = 60, **overrides) -> AppointmentOut:
    values = dict(
        id="appt-1",
        patient_id="patient-a",
        practitioner_id="dr-smith",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        procedure_type="cleaning",
        status="scheduled",
    )
    values.update(overrides)
    return AppointmentOut(**values)


def _candidate(start: datetime, minutes: int = 30, **overrides) -> Candidate:
    values = dict(practitioner_id="dr-smith", start=start, end=start + timedelta(minutes=minutes))
    values.update(overrides)
    return Candidate(**values)


EXISTING = _appointment(DAY.replace(hour=10))


@pytest.mark.parametrize(
    "start, conflict",
    [
        # Existing 10:00-11:00 plus a 15 minute buffer.
        (DAY.replace(hour=11, minute=15), False),
        (DAY.replace(hour=11, minute=14), True),
        (DAY.replace(hour=10, minute=30), True),
        # 30 minute candidate: its own end plus buffer must clear 10:00.
        (DAY.replace(hour=9, minute=15), False),
        (DAY.replace(hour=9, minute=16), True),
    ],
)
def test_buffer_boundaries(start, conflict):
    report = detect_conflicts(_candidate(start), [EXISTING], buffer_minutes=15)
    assert report.has_conflict is conflict


def test_conflict_is_symmetric():
    first = _appointment(DAY.replace(hour=9), minutes=30, id="a")
    second = _appointment(DAY.replace(hour=9, minute=40), minutes=30, id="b")

    forward = detect_conflicts(_candidate(second.start_time), [first])
    backward = detect_conflicts(_candidate(first.start_time), [second])

    assert forward.has_conflict and backward.has_conflict


@pytest.mark.parametrize("status", ["cancelled", "no-show", "rescheduled"])
def test_inactive_appointments_never_conflict(status):
    existing = _appointment(DAY.replace(hour=10), status=status)
    assert not detect_conflicts(_candidate(DAY.replace(hour=10)), [existing]).has_conflict


def test_other_practitioner_is_not_a_conflict():
    candidate = _candidate(DAY.replace(hour=10), practitioner_id="dr-jones")
    assert not detect_conflicts(candidate, [EXISTING]).has_conflict


def test_patient_double_booking_across_practitioners():
    candidate = _candidate(DAY.replace(hour=10), practitioner_id="dr-jones", patient_id="patient-a")

    report = detect_conflicts(candidate, [EXISTING])

    assert [c.kind for c in report.conflicts] == ["patient_double_booked"]


def test_rescheduling_an_appointment_ignores_itself():
    candidate = _candidate(DAY.replace(hour=10, minute=15), appointment_id="appt-1")
    assert not detect_conflicts(candidate, [EXISTING]).has_conflict


def test_workload_warnings():
    same_day = [
        _appointment(DAY.replace(hour=9), id="a", patient_id="patient-b"),
        _appointment(DAY.replace(hour=13), id="b", patient_id="patient-a"),
    ]
    candidate = _candidate(DAY.replace(hour=15), patient_id="patient-a")

    warnings = workload_warnings(candidate, same_day, max_daily_appointments=2)

    assert len(warnings) == 2
    assert workload_warnings(_candidate(DAY.replace(hour=15)), same_day, 5) == []
