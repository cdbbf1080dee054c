import bisect
import itertools
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from ..config import Settings, settings as default_settings
from ..schemas import (
    AppointmentCreate,
    AppointmentOut,
    EmergencyReport,
    PatientCreate,
    PatientInfo,
    PatientOut,
    QueueEntryOut,
    QueueStatus,
    Slot,
    SymptomReport,
    TriageResult,
)
from .availability import AvailabilityService
from .notifications import NotificationGateway
from .store import AppointmentStore, PatientStore, SlotUnavailableError
from .triage import CATEGORIES, assess

logger = logging.getLogger(__name__)

BUMPABLE_PROCEDURES = ("cleaning", "checkup", "consultation", "whitening")
BUMP_REASON = "Emergency patient priority"


class TriageNotFoundError(LookupError):
    pass


@dataclass
class EmergencyQueueEntry:
    result: TriageResult
    priority: int
    inserted_at: datetime
    sequence: int

    def sort_key(self) -> tuple[int, datetime, int]:
        return (self.priority, self.inserted_at, self.sequence)


class EmergencyQueue:
    """In-flight emergencies ordered by (category rank, arrival), FIFO within a rank.

    One lock guards the entries; it is only held for the in-memory mutation.
    Callers always receive copies of the stored results.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: list[EmergencyQueueEntry] = []
        self._resolved: dict[str, TriageResult] = {}
        self._sequence = itertools.count()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def push(self, result: TriageResult) -> TriageResult:
        with self._lock:
            entry = EmergencyQueueEntry(
                result=result.model_copy(update={"status": "queued"}),
                priority=result.priority,
                inserted_at=self._clock(),
                sequence=next(self._sequence),
            )
            bisect.insort(self._entries, entry, key=EmergencyQueueEntry.sort_key)
            self._renumber()
            return entry.result.model_copy()

    def get(self, triage_id: str) -> TriageResult | None:
        with self._lock:
            entry = self._find(triage_id)
            if entry is not None:
                return entry.result.model_copy()
            resolved = self._resolved.get(triage_id)
            return resolved.model_copy() if resolved else None

    def update(self, triage_id: str, **changes) -> TriageResult:
        with self._lock:
            entry = self._find(triage_id)
            if entry is None:
                raise TriageNotFoundError(triage_id)
            entry.result = entry.result.model_copy(update=changes)
            return entry.result.model_copy()

    def resolve(self, triage_id: str, notes: str | None = None) -> TriageResult:
        with self._lock:
            entry = self._find(triage_id)
            if entry is None:
                raise TriageNotFoundError(triage_id)
            self._entries.remove(entry)
            self._renumber()
            resolved = entry.result.model_copy(
                update={
                    "status": "resolved",
                    "queue_position": None,
                    "resolved_at": self._clock(),
                    "notes": notes if notes is not None else entry.result.notes,
                }
            )
            self._resolved[triage_id] = resolved
            return resolved.model_copy()

    def snapshot(self) -> list[TriageResult]:
        with self._lock:
            return [entry.result.model_copy() for entry in self._entries]

    def purge_resolved(self, retention: timedelta) -> int:
        cutoff = self._clock() - retention
        with self._lock:
            expired = [
                triage_id
                for triage_id, result in self._resolved.items()
                if result.resolved_at and result.resolved_at < cutoff
            ]
            for triage_id in expired:
                del self._resolved[triage_id]
        return len(expired)

    def _find(self, triage_id: str) -> EmergencyQueueEntry | None:
        for entry in self._entries:
            if entry.result.id == triage_id:
                return entry
        return None

    def _renumber(self) -> None:
        for position, entry in enumerate(self._entries, start=1):
            entry.result.queue_position = position


class EmergencyQueueManager:
    def __init__(
        self,
        appointments: AppointmentStore,
        patients: PatientStore,
        availability: AvailabilityService,
        notifier: NotificationGateway,
        config: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._appointments = appointments
        self._patients = patients
        self._availability = availability
        self._notifier = notifier
        self._settings = config or default_settings
        self._clock = clock
        self.queue = EmergencyQueue(clock)

    def triage_patient(self, patient: PatientInfo, symptoms: SymptomReport) -> TriageResult:
        now = self._clock()
        assessment = assess(symptoms, self._settings.triage)
        profile = assessment.profile
        result = TriageResult(
            id=f"TRIAGE-{uuid.uuid4().hex[:12]}",
            timestamp=now,
            patient=patient,
            symptoms=symptoms,
            severity=assessment.severity,
            category=assessment.category,
            priority=profile.rank,
            response_time=profile.response_time,
            estimated_wait_minutes=profile.max_wait_minutes,
            protocol=assessment.protocol,
            instructions=assessment.instructions,
            requires_emergency_services=assessment.life_threatening,
        )
        if assessment.life_threatening:
            self._notify_emergency_team(result)

        queued = self.queue.push(result)
        logger.info(
            "triage_queued triage_id=%s category=%s severity=%s position=%s",
            queued.id,
            queued.category,
            queued.severity,
            queued.queue_position,
        )

        updated = self._acquire_slot(queued, now)
        self._notify_staff(updated)
        return updated

    def update_status(self, triage_id: str, status: str, notes: str | None = None) -> TriageResult:
        if status == "resolved":
            result = self.queue.resolve(triage_id, notes)
            logger.info("triage_resolved triage_id=%s", triage_id)
            return result
        changes = {"status": status}
        if notes is not None:
            changes["notes"] = notes
        return self.queue.update(triage_id, **changes)

    def get_queue_status(self) -> QueueStatus:
        entries = self.queue.snapshot()
        by_category = {category: 0 for category in CATEGORIES}
        for entry in entries:
            by_category[entry.category] += 1
        return QueueStatus(
            queue_length=len(entries),
            by_category=by_category,
            entries=[
                QueueEntryOut(
                    id=entry.id,
                    position=entry.queue_position or 0,
                    category=entry.category,
                    wait_minutes=entry.estimated_wait_minutes,
                    patient=entry.patient.name,
                )
                for entry in entries
            ],
        )

    def emergency_report(self) -> EmergencyReport:
        entries = self.queue.snapshot()
        averages = {}
        for category in CATEGORIES:
            waits = [
                entry.estimated_wait_minutes or 0 for entry in entries if entry.category == category
            ]
            if waits:
                averages[category] = sum(waits) / len(waits)
        return EmergencyReport(
            generated_at=self._clock(),
            active_emergencies=len(entries),
            queue_status=self.get_queue_status(),
            average_wait_minutes=averages,
        )

    def purge_resolved(self) -> int:
        return self.queue.purge_resolved(
            timedelta(minutes=self._settings.resolved_triage_retention_minutes)
        )

    def _acquire_slot(self, result: TriageResult, now: datetime) -> TriageResult:
        patient = self._resolve_patient(result.patient)
        patient_id = patient.id if patient else None
        max_wait = CATEGORIES[result.category].max_wait_minutes
        deadline = now + timedelta(minutes=max_wait)

        booked = self._book_from_hold(result, patient_id, now, deadline)
        if booked is None and result.category in ("critical", "urgent"):
            booked = self._book_by_bumping(result, patient_id, now, deadline)
        if booked is None:
            booked = self._book_next_opening(result, patient_id, now, max_wait)

        if booked is None:
            logger.warning(
                "triage_no_slot triage_id=%s category=%s", result.id, result.category
            )
            return self.queue.update(result.id, status="no_slot")

        appointment, bumped_id = booked
        slot = Slot(
            start=appointment.start_time,
            end=appointment.end_time,
            practitioner_id=appointment.practitioner_id,
        )
        logger.info(
            "triage_slot_found triage_id=%s appointment_id=%s start=%s bumped=%s",
            result.id,
            appointment.id,
            slot.start.isoformat(),
            bumped_id,
        )
        return self.queue.update(
            result.id,
            status="slot_found",
            appointment_slot=slot,
            appointment_id=appointment.id,
            bumped_appointment_id=bumped_id,
            estimated_wait_minutes=max(0, int((slot.start - now).total_seconds() // 60)),
        )

    def _book_from_hold(
        self, result: TriageResult, patient_id: str | None, now: datetime, deadline: datetime
    ) -> tuple[AppointmentOut, None] | None:
        for hold in self._appointments.find_open_holds(now, deadline):
            slot = Slot(start=hold.start_time, end=hold.end_time, practitioner_id=hold.practitioner_id)
            if not self._is_clear(result, slot, patient_id):
                continue
            if self._appointments.claim_hold(hold.id, result.id) is None:
                continue
            appointment = self._create_appointment(result, slot, patient_id)
            if appointment is not None:
                return appointment, None
            self._appointments.release_hold(hold.id, result.id)
        return None

    def _book_by_bumping(
        self, result: TriageResult, patient_id: str | None, now: datetime, deadline: datetime
    ) -> tuple[AppointmentOut, str] | None:
        candidates = [
            appt
            for appt in self._appointments.find(
                start=now,
                end=deadline + timedelta(minutes=1),
                statuses=("scheduled", "confirmed"),
                procedure_types=BUMPABLE_PROCEDURES,
            )
            if now <= appt.start_time <= deadline and appt.priority != "high"
        ]
        for to_bump in sorted(candidates, key=lambda appt: appt.start_time):
            slot = Slot(
                start=to_bump.start_time,
                end=to_bump.end_time,
                practitioner_id=to_bump.practitioner_id,
            )
            if not self._is_clear(result, slot, patient_id, ignore_appointment_id=to_bump.id):
                continue
            bumped = self._appointments.update_status(to_bump.id, "rescheduled", BUMP_REASON)
            appointment = self._create_appointment(result, slot, patient_id)
            if appointment is None:
                self._appointments.update_status(to_bump.id, to_bump.status, to_bump.status_reason)
                continue
            logger.info("appointment_bumped appointment_id=%s start=%s", bumped.id, bumped.start_time)
            self._notify_bumped_patient(bumped.patient_id, bumped.start_time)
            return appointment, bumped.id
        return None

    def _book_next_opening(
        self, result: TriageResult, patient_id: str | None, now: datetime, max_wait: int
    ) -> tuple[AppointmentOut, None] | None:
        limit = now + timedelta(minutes=max_wait * 2)
        for slot in self._availability.find_next_available_slots(
            now,
            self._settings.emergency_duration_minutes,
            count=3,
            lookahead_days=(max_wait * 2) // (24 * 60) + 2,
            patient_id=patient_id,
        ):
            if slot.start > limit:
                break
            appointment = self._create_appointment(result, slot, patient_id)
            if appointment is not None:
                return appointment, None
        return None

    def _is_clear(
        self,
        result: TriageResult,
        slot: Slot,
        patient_id: str | None,
        ignore_appointment_id: str | None = None,
    ) -> bool:
        report = self._availability.conflicts_for(slot, patient_id, ignore_appointment_id)
        if report.has_conflict:
            logger.info(
                "triage_slot_conflict triage_id=%s start=%s reason=%s",
                result.id,
                slot.start.isoformat(),
                report.conflicts[0].reason,
            )
        return not report.has_conflict

    def _create_appointment(
        self, result: TriageResult, slot: Slot, patient_id: str | None
    ) -> AppointmentOut | None:
        try:
            return self._appointments.create(
                AppointmentCreate(
                    patient_id=patient_id,
                    practitioner_id=slot.practitioner_id,
                    start_time=slot.start,
                    end_time=slot.end,
                    procedure_type="emergency",
                    origin="triage",
                    triage_id=result.id,
                    priority="high",
                )
            )
        except SlotUnavailableError:
            logger.info("triage_slot_taken triage_id=%s start=%s", result.id, slot.start.isoformat())
            return None

    def _resolve_patient(self, info: PatientInfo) -> PatientOut | None:
        try:
            if info.id:
                return self._patients.find_by_id(info.id)
            if not (info.phone or info.email):
                return None
            existing = self._patients.find_by_contact(phone=info.phone, email=info.email)
            if existing:
                return existing
            return self._patients.create(
                PatientCreate(name=info.name, phone=info.phone, email=info.email)
            )
        except Exception:
            logger.exception("triage_patient_lookup_failed name=%s", info.name)
            return None

    def _notify_bumped_patient(self, patient_id: str | None, start: datetime) -> None:
        if not patient_id:
            return
        patient = self._patients.find_by_id(patient_id)
        contact = patient and (patient.phone or patient.email)
        if not contact:
            return
        self._notifier.notify(
            contact,
            f"We need to reschedule your {start.strftime('%I:%M %p').lstrip('0')} appointment "
            "due to an emergency. We'll call you shortly with new options. "
            "We apologize for the inconvenience.",
        )

    def _notify_emergency_team(self, result: TriageResult) -> None:
        message = (
            f"CRITICAL EMERGENCY: {result.patient.name} - {result.symptoms.description}. "
            "Advised to call 911."
        )
        for contact in self._settings.staff_contacts:
            self._notifier.notify(contact, message)

    def _notify_staff(self, result: TriageResult) -> None:
        if result.category not in ("critical", "urgent"):
            return
        profile = CATEGORIES[result.category]
        message = (
            f"Emergency Triage: {result.patient.name} - {profile.color.upper()} priority. "
            f"ETA: {profile.response_time}. {result.symptoms.description}"
        )
        for contact in self._settings.staff_contacts:
            self._notifier.notify(contact, message)
