from datetime import datetime

import pytest

from dental_scheduler.schemas import PatientInfo, SymptomReport
from dental_scheduler.services.emergency_queue import BUMP_REASON, TriageNotFoundError
from dental_scheduler.services.store import SlotUnavailableError
from dental_scheduler.services.triage import assess, calculate_severity, determine_category

CATEGORY_ORDER = ["minor", "moderate", "urgent", "critical"]


def _base(**overrides) -> SymptomReport:
    values = dict(description="tooth hurts", pain_level=4, can_eat=True, medication_helps=True)
    values.update(overrides)
    return SymptomReport(**values)


@pytest.mark.parametrize(
    "change",
    [
        {"swelling": True},
        {"bleeding": True},
        {"fever": True},
        {"can_eat": False},
        {"sleep_disruption": True},
        {"medication_helps": False},
        {"duration": "just started"},
        {"duration": "3+ days"},
        {"pain_level": 9},
        {"description": "tooth hurts, possible abscess"},
    ],
)
def test_adding_a_symptom_never_lowers_severity(change):
    base = _base()
    worse = _base(**change)

    assert calculate_severity(worse) > calculate_severity(base)
    assert CATEGORY_ORDER.index(assess(worse).category) >= CATEGORY_ORDER.index(assess(base).category)


def test_severity_is_clamped():
    report = SymptomReport(
        description="knocked out tooth, abscess, fracture, infection",
        pain_level=10,
        swelling=True,
        bleeding=True,
        fever=True,
    )
    assert calculate_severity(report) == 100


@pytest.mark.parametrize(
    "severity, category",
    [(0, "minor"), (39, "minor"), (40, "moderate"), (69, "moderate"), (70, "urgent"), (100, "urgent")],
)
def test_category_thresholds(severity, category):
    assert determine_category(severity) == category


def test_life_threatening_overrides_score():
    report = SymptomReport(
        description="Patient is unconscious after a fall", can_eat=True, medication_helps=True
    )

    assessment = assess(report)

    assert assessment.category == "critical"
    assert assessment.life_threatening
    assert "Call 911 immediately" in assessment.instructions


def test_protocol_selection():
    assert assess(_base(description="my tooth got knocked out")).protocol.name == "knocked_out_tooth"
    assert assess(_base(description="swollen gum, maybe an abscess")).protocol.name == "dental_abscess"
    assert assess(_base(pain_level=8)).protocol.name == "severe_pain"
    assert assess(_base()).protocol is None


def test_severe_pain_intake_is_queued_as_urgent(scheduler):
    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.severity >= 70
    assert result.category == "urgent"
    assert result.queue_position == 1
    status = scheduler.get_queue_status()
    assert status.queue_length == 1
    assert status.by_category["urgent"] == 1
    assert status.entries[0].id == result.id


def test_urgent_intake_takes_next_opening_within_deadline(scheduler):
    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz", phone="555-222-3333"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.status == "slot_found"
    assert result.appointment_slot.start == datetime(2026, 10, 19, 9, 30)
    appointment = scheduler.appointments.find(statuses=["scheduled"])[0]
    assert appointment.id == result.appointment_id
    assert appointment.triage_id == result.id
    assert appointment.origin == "triage"
    assert appointment.priority == "high"


def test_queue_orders_by_category_then_arrival(scheduler, clock):
    minor = scheduler.triage_patient(PatientInfo(name="A"), _base(pain_level=1))
    clock.advance(minutes=1)
    urgent = scheduler.triage_patient(
        PatientInfo(name="B"), SymptomReport(description="severe pain", pain_level=8, swelling=True)
    )
    clock.advance(minutes=1)
    second_minor = scheduler.triage_patient(PatientInfo(name="C"), _base(pain_level=2))

    entries = scheduler.get_queue_status().entries

    assert [entry.id for entry in entries] == [urgent.id, minor.id, second_minor.id]
    assert [entry.position for entry in entries] == [1, 2, 3]


def test_reserved_emergency_hold_is_claimed_first(scheduler):
    hold = scheduler.appointments.add_hold(
        "dr-smith", datetime(2026, 10, 19, 9, 15), datetime(2026, 10, 19, 10, 0)
    )

    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz", phone="555-222-3333"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.appointment_slot.start == hold.start_time
    assert result.bumped_appointment_id is None
    assert scheduler.appointments.find_open_holds(hold.start_time, hold.end_time) == []
    assert scheduler.appointments.claim_hold(hold.id, "someone-else") is None


def test_urgent_intake_bumps_routine_cleaning(scheduler, book, make_patient):
    regular = make_patient(name="Pat Lee", phone="555-000-1111")
    cleaning = book(datetime(2026, 10, 19, 9, 30), procedure_type="cleaning", patient_id=regular.id)

    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz", phone="555-222-3333"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.bumped_appointment_id == cleaning.id
    assert result.appointment_slot.start == cleaning.start_time
    bumped = scheduler.appointments.find(statuses=["rescheduled"])
    assert [appt.id for appt in bumped] == [cleaning.id]
    assert bumped[0].status_reason == BUMP_REASON
    assert result.appointment_id is not None


def test_high_priority_and_clinical_work_are_never_bumped(scheduler, book):
    book(datetime(2026, 10, 19, 9, 30), procedure_type="root canal")
    book(datetime(2026, 10, 19, 11, 0), procedure_type="cleaning", priority="high")

    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.bumped_appointment_id is None
    assert scheduler.appointments.find(statuses=["rescheduled"]) == []


def test_no_slot_within_twice_the_wait_leaves_protocol(scheduler, book):
    # Fill the morning so nothing opens before 10:00.
    book(datetime(2026, 10, 19, 9, 30), minutes=120, procedure_type="root canal")

    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.status == "no_slot"
    assert result.protocol.name == "severe_pain"
    assert result.instructions


def test_critical_intake_advises_emergency_services(scheduler):
    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz"), SymptomReport(description="he is not breathing properly")
    )

    assert result.category == "critical"
    assert result.requires_emergency_services
    assert result.queue_position == 1


def test_resolve_removes_from_queue_and_is_purged_later(scheduler, clock):
    result = scheduler.triage_patient(PatientInfo(name="A"), _base())

    resolved = scheduler.update_emergency_status(result.id, "resolved", "seen by Dr. Smith")

    assert resolved.status == "resolved"
    assert resolved.notes == "seen by Dr. Smith"
    assert scheduler.get_queue_status().queue_length == 0
    assert scheduler.get_triage(result.id).status == "resolved"

    clock.advance(minutes=61)
    assert scheduler.cleanup()["triage_purged"] == 1
    with pytest.raises(TriageNotFoundError):
        scheduler.get_triage(result.id)


def test_unknown_triage_id(scheduler):
    with pytest.raises(TriageNotFoundError):
        scheduler.update_emergency_status("TRIAGE-missing", "resolved")


def test_emergency_report_averages(scheduler):
    scheduler.triage_patient(PatientInfo(name="A"), _base(pain_level=1))
    report = scheduler.emergency_report()

    assert report.active_emergencies == 1
    assert report.queue_status.by_category["minor"] == 1
    assert set(report.average_wait_minutes) == {"minor"}
    assert report.generated_at == datetime(2026, 10, 19, 9, 0)


def test_hold_overlapping_a_booking_is_skipped(scheduler, book):
    root_canal = book(datetime(2026, 10, 19, 9, 0), procedure_type="root canal")
    hold = scheduler.appointments.add_hold(
        "dr-smith", datetime(2026, 10, 19, 9, 15), datetime(2026, 10, 19, 10, 0)
    )

    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz", phone="555-222-3333"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.status == "no_slot"
    assert [appt.id for appt in scheduler.appointments.find(statuses=["scheduled"])] == [root_canal.id]
    assert [h.id for h in scheduler.appointments.find_open_holds(hold.start_time, hold.end_time)] == [hold.id]


def test_failed_booking_releases_the_claimed_hold(scheduler, monkeypatch):
    hold = scheduler.appointments.add_hold(
        "dr-smith", datetime(2026, 10, 19, 9, 15), datetime(2026, 10, 19, 10, 0)
    )

    def taken(appointment):
        raise SlotUnavailableError("Slot already booked")

    monkeypatch.setattr(scheduler.appointments, "create", taken)

    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz", phone="555-222-3333"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.status == "no_slot"
    assert [h.id for h in scheduler.appointments.find_open_holds(hold.start_time, hold.end_time)] == [hold.id]


def test_walk_in_without_contact_still_gets_the_bumped_slot(scheduler, book, make_patient):
    regular = make_patient(name="Pat Lee", phone="555-000-1111")
    cleaning = book(datetime(2026, 10, 19, 9, 30), patient_id=regular.id)

    result = scheduler.triage_patient(
        PatientInfo(name="Walk In"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.status == "slot_found"
    assert result.bumped_appointment_id == cleaning.id
    emergency = scheduler.appointments.find(statuses=["scheduled"])
    assert [appt.id for appt in emergency] == [result.appointment_id]
    assert emergency[0].patient_id is None
    assert emergency[0].start_time == cleaning.start_time
    assert not scheduler.check_availability(datetime(2026, 10, 19, 9, 30), 30).available


def test_bump_is_undone_when_the_emergency_booking_fails(scheduler, book, monkeypatch):
    cleaning = book(datetime(2026, 10, 19, 9, 30))

    def taken(appointment):
        raise SlotUnavailableError("Slot already booked")

    monkeypatch.setattr(scheduler.appointments, "create", taken)

    result = scheduler.triage_patient(
        PatientInfo(name="Sam Ortiz", phone="555-222-3333"),
        SymptomReport(description="severe pain", pain_level=8, swelling=True),
    )

    assert result.status == "no_slot"
    assert result.bumped_appointment_id is None
    restored = scheduler.appointments.find(statuses=["scheduled"])
    assert [appt.id for appt in restored] == [cleaning.id]
    assert restored[0].status_reason is None
