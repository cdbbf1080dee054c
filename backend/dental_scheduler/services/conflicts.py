from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from ..schemas import ACTIVE_STATUSES, AppointmentOut, Conflict, ConflictReport


@dataclass
class Candidate:
    practitioner_id: str
    start: datetime
    end: datetime
    patient_id: str | None = None
    appointment_id: str | None = None


def overlaps(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime,
    buffer_minutes: int,
) -> bool:
    # Half-open intervals, each extended by the sanitation buffer at its end.
    buffer = timedelta(minutes=buffer_minutes)
    return start < other_end + buffer and other_start < end + buffer


def detect_conflicts(
    candidate: Candidate,
    existing: Iterable[AppointmentOut],
    buffer_minutes: int = 15,
) -> ConflictReport:
    conflicts = []
    for appointment in existing:
        if appointment.status not in ACTIVE_STATUSES:
            continue
        if candidate.appointment_id and appointment.id == candidate.appointment_id:
            continue
        if not overlaps(
            candidate.start,
            candidate.end,
            appointment.start_time,
            appointment.end_time,
            buffer_minutes,
        ):
            continue
        when = appointment.start_time.strftime("%I:%M %p").lstrip("0")
        if appointment.practitioner_id == candidate.practitioner_id:
            conflicts.append(
                Conflict(
                    appointment=appointment,
                    kind="practitioner_double_booked",
                    reason=f"{appointment.practitioner_id} is already booked at {when}",
                )
            )
        if candidate.patient_id and appointment.patient_id == candidate.patient_id:
            conflicts.append(
                Conflict(
                    appointment=appointment,
                    kind="patient_double_booked",
                    reason=f"Patient already has an appointment at {when}",
                )
            )
    return ConflictReport(conflicts=conflicts)


def workload_warnings(
    candidate: Candidate,
    same_day: Iterable[AppointmentOut],
    max_daily_appointments: int,
) -> list[str]:
    """Non-blocking notes about the candidate's day."""
    active = [
        appt
        for appt in same_day
        if appt.status in ACTIVE_STATUSES
        and appt.start_time.date() == candidate.start.date()
        and appt.id != candidate.appointment_id
    ]
    warnings = []
    practitioner_count = sum(1 for appt in active if appt.practitioner_id == candidate.practitioner_id)
    if practitioner_count >= max_daily_appointments:
        warnings.append(
            f"{candidate.practitioner_id} already has {practitioner_count} appointments "
            f"this day (max: {max_daily_appointments})"
        )
    if candidate.patient_id:
        patient_count = sum(1 for appt in active if appt.patient_id == candidate.patient_id)
        if patient_count:
            warnings.append(f"Patient already has {patient_count} appointment(s) on this day")
    return warnings
