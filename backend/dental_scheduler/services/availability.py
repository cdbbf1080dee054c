import logging
from datetime import date, datetime, time, timedelta
from typing import Callable

from ..config import Settings, settings as default_settings
from ..schemas import ACTIVE_STATUSES, AppointmentOut, AvailabilityResult, ConflictReport, Slot
from .conflicts import Candidate, detect_conflicts, workload_warnings
from .slots import generate_slot_starts, generate_slots, is_within_working_hours
from .store import AppointmentStore

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Answers "is this time free?" and "what is free next?" for the practice.

    Both questions go through the same predicate, so a slot returned by
    ``find_next_available_slots`` is always accepted by ``check_availability``
    at the moment of the search. Store reads are snapshots; the store's own
    uniqueness constraint settles races between simultaneous bookings.
    """

    def __init__(
        self,
        store: AppointmentStore,
        config: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._settings = config or default_settings
        self._clock = clock

    def check_availability(
        self,
        start: datetime,
        duration_minutes: int = 30,
        practitioner_id: str | None = None,
        patient_id: str | None = None,
    ) -> AvailabilityResult:
        end = start + timedelta(minutes=duration_minutes)
        if not is_within_working_hours(start, end, self._settings.working_hours):
            return AvailabilityResult(available=False, reason="outside_business_hours")
        if start < self._earliest_bookable():
            return AvailabilityResult(available=False, reason="too_soon")

        existing = self._load(start, end)
        result = self._evaluate(start, end, existing, practitioner_id, patient_id)
        if result.available:
            same_day = self._store.find(
                start=datetime.combine(start.date(), time.min),
                end=datetime.combine(start.date() + timedelta(days=1), time.min),
                statuses=ACTIVE_STATUSES,
            )
            result.warnings = workload_warnings(
                Candidate(
                    practitioner_id=result.practitioner_id,
                    start=start,
                    end=end,
                    patient_id=patient_id,
                ),
                same_day,
                self._settings.max_daily_appointments,
            )
        return result

    def find_next_available_slots(
        self,
        from_dt: datetime,
        duration_minutes: int = 30,
        count: int = 2,
        lookahead_days: int | None = None,
        patient_id: str | None = None,
    ) -> list[Slot]:
        if lookahead_days is None:
            lookahead_days = self._settings.lookahead_days
        duration = timedelta(minutes=duration_minutes)
        earliest = max(from_dt, self._earliest_bookable())
        found: list[Slot] = []

        for offset in range(lookahead_days):
            day = from_dt.date() + timedelta(days=offset)
            starts = [
                start
                for start in generate_slot_starts(
                    day,
                    self._settings.working_hours.for_date(day),
                    duration_minutes,
                    self._settings.slot_granularity_minutes,
                )
                if start >= earliest
            ]
            if not starts:
                continue

            existing = self._load(starts[0], starts[-1] + duration)
            for start in starts:
                result = self._evaluate(start, start + duration, existing, None, patient_id)
                if not result.available:
                    continue
                found.append(
                    Slot(start=start, end=start + duration, practitioner_id=result.practitioner_id)
                )
                if len(found) >= count:
                    return found

        if not found:
            logger.info(
                "no_slots_found from=%s duration=%s lookahead_days=%s",
                from_dt.isoformat(),
                duration_minutes,
                lookahead_days,
            )
        return found

    def day_slots(self, day: date, duration_minutes: int = 30) -> list[Slot]:
        """Every grid slot of the day per practitioner, flagged free or taken."""
        granularity = self._settings.slot_granularity_minutes
        existing = self._load(
            datetime.combine(day, time.min), datetime.combine(day + timedelta(days=1), time.min)
        )
        earliest = self._earliest_bookable()
        slots = []
        for practitioner_id in self._settings.practitioner_ids:
            for slot in generate_slots(
                day, self._settings.working_hours, duration_minutes, practitioner_id, granularity
            ):
                free = slot.start >= earliest and self._evaluate(
                    slot.start, slot.end, existing, practitioner_id, None
                ).available
                slots.append(slot.model_copy(update={"available": free}))
        return sorted(slots, key=lambda slot: (slot.start, slot.practitioner_id))

    def conflicts_for(
        self,
        slot: Slot,
        patient_id: str | None = None,
        ignore_appointment_id: str | None = None,
    ) -> ConflictReport:
        """Conflict check alone, for triage writes that skip the notice and hours rules."""
        return detect_conflicts(
            Candidate(
                practitioner_id=slot.practitioner_id,
                start=slot.start,
                end=slot.end,
                patient_id=patient_id,
                appointment_id=ignore_appointment_id,
            ),
            self._load(slot.start, slot.end),
            self._settings.buffer_minutes,
        )

    def _earliest_bookable(self) -> datetime:
        return self._clock() + timedelta(minutes=self._settings.min_advance_minutes)

    def _load(self, start: datetime, end: datetime) -> list[AppointmentOut]:
        buffer = timedelta(minutes=self._settings.buffer_minutes)
        return self._store.find(start=start - buffer, end=end + buffer, statuses=ACTIVE_STATUSES)

    def _evaluate(
        self,
        start: datetime,
        end: datetime,
        existing: list[AppointmentOut],
        practitioner_id: str | None,
        patient_id: str | None,
    ) -> AvailabilityResult:
        practitioners = [practitioner_id] if practitioner_id else self._settings.practitioner_ids
        conflicts = []
        for candidate_practitioner in practitioners:
            report = detect_conflicts(
                Candidate(
                    practitioner_id=candidate_practitioner,
                    start=start,
                    end=end,
                    patient_id=patient_id,
                ),
                existing,
                self._settings.buffer_minutes,
            )
            if not report.has_conflict:
                return AvailabilityResult(available=True, practitioner_id=candidate_practitioner)
            conflicts.extend(report.conflicts)
        return AvailabilityResult(available=False, reason="conflict", conflicts=conflicts)
