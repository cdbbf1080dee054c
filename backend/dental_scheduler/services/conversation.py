import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from ..config import Settings, settings as default_settings
from ..schemas import (
    AppointmentCreate,
    AppointmentOut,
    BookingData,
    ConversationState,
    NoShowRisk,
    PatientCreate,
    PendingAppointment,
    Slot,
    Step,
    Turn,
    TurnResult,
)
from .availability import AvailabilityService
from .extraction import (
    ORDINAL_PATTERN,
    DateParseError,
    Extraction,
    choose_ordinal,
    clean_name,
    duration_for,
    extract_entities,
    is_affirmative,
    is_correction,
    is_filler_only,
    is_frustrated,
    is_negative,
    resolve_date,
    resolve_time,
    strip_rejected,
)
from .llm import ReplyPhraser
from .no_show import predict_no_show
from .notifications import NotificationGateway
from .store import AppointmentStore, PatientStore, SlotUnavailableError

logger = logging.getLogger(__name__)

BOOKING_FIELDS = (
    "procedure_type",
    "preferred_date",
    "preferred_time",
    "patient_name",
    "patient_phone",
    "patient_email",
    "is_emergency",
)
GATHER_ORDER = ("preferred_date", "preferred_time", "procedure_type", "patient_name", "contact")
STEP_FOR_FIELD: dict[str, Step] = {
    "preferred_date": "collecting_date",
    "preferred_time": "collecting_time",
    "procedure_type": "collecting_type",
    "patient_name": "collecting_name",
    "contact": "collecting_contact",
}
FIELD_FOR_STEP = {step: name for name, step in STEP_FOR_FIELD.items()}
QUESTIONS = {
    "preferred_date": "What day would you like to come in?",
    "preferred_time": "What time of day works best for you?",
    "procedure_type": "What kind of visit do you need? For example a cleaning, checkup or filling.",
    "patient_name": "Could I get your full name?",
    "contact": "What's the best phone number or email to reach you?",
}


class ConversationStore:
    """Owns every live conversation, keyed by conversation id.

    States are immutable values; ``save`` swaps the stored value under the
    lock, so concurrent turns on different conversations never share data.
    """

    def __init__(
        self,
        idle_timeout: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, ConversationState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def get(self, conversation_id: str) -> ConversationState | None:
        with self._lock:
            return self._states.get(conversation_id)

    def get_or_create(self, conversation_id: str) -> ConversationState:
        with self._lock:
            state = self._states.get(conversation_id)
            if state is None:
                state = ConversationState(
                    conversation_id=conversation_id, last_activity=self._clock()
                )
                self._states[conversation_id] = state
            return state

    def save(self, state: ConversationState) -> None:
        with self._lock:
            self._states[state.conversation_id] = state

    def reset(self, conversation_id: str) -> bool:
        with self._lock:
            return self._states.pop(conversation_id, None) is not None

    def evict_idle(self) -> int:
        cutoff = self._clock() - self._idle_timeout
        with self._lock:
            expired = [
                conversation_id
                for conversation_id, state in self._states.items()
                if state.last_activity < cutoff
            ]
            for conversation_id in expired:
                del self._states[conversation_id]
        if expired:
            logger.info("conversations_evicted count=%s", len(expired))
        return len(expired)


def apply_update(
    state: ConversationState,
    extracted: dict[str, Extraction],
    confirm: Iterable[str] = (),
) -> ConversationState:
    """Merge extracted fields into a new state.

    A confirmed field only changes when the new value was stated explicitly.
    """
    changes: dict[str, Any] = {}
    for name, extraction in extracted.items():
        if name not in BOOKING_FIELDS:
            continue
        if name in state.confirmed_fields and not extraction.explicit:
            logger.debug(
                "confirmed_field_kept conversation_id=%s field=%s", state.conversation_id, name
            )
            continue
        changes[name] = extraction.value

    confirmed = state.confirmed_fields | {name for name in confirm if name in changes}
    return state.model_copy(
        update={
            "data": state.data.model_copy(update=changes),
            "confirmed_fields": frozenset(confirmed),
        }
    )


def missing_fields(data: BookingData) -> list[str]:
    missing = []
    for name in GATHER_ORDER:
        if name == "contact":
            if not data.has_contact():
                missing.append(name)
        elif not getattr(data, name):
            missing.append(name)
    return missing


def describe_time(moment: datetime) -> str:
    return f"{moment:%A, %B} {moment.day} at {moment.strftime('%I:%M %p').lstrip('0')}"


def _describe_slots(slots: Iterable[Slot]) -> str:
    described = [describe_time(slot.start) for slot in slots]
    if len(described) == 1:
        return described[0]
    return ", ".join(described[:-1]) + f" or {described[-1]}"


@dataclass
class _Outcome:
    state: ConversationState
    reply: str
    success: bool = True
    appointment: AppointmentOut | None = None
    needs_human_help: bool = False
    escalation_reason: str | None = None
    is_emergency: bool = False
    alternatives: list[Slot] = field(default_factory=list)
    no_show_risk: NoShowRisk | None = None


class BookingConversation:
    """Multi-turn booking dialogue: extract, merge, decide, execute, reply."""

    def __init__(
        self,
        store: ConversationStore,
        availability: AvailabilityService,
        appointments: AppointmentStore,
        patients: PatientStore,
        notifier: NotificationGateway | None = None,
        phraser: ReplyPhraser | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._availability = availability
        self._appointments = appointments
        self._patients = patients
        self._settings = config or default_settings
        self._notifier = notifier or NotificationGateway(self._settings)
        self._phraser = phraser or ReplyPhraser(self._settings)
        self._clock = clock

    async def handle_utterance(
        self, conversation_id: str, text: str, context: dict[str, Any] | None = None
    ) -> TurnResult:
        now = self._clock()
        previous = self._store.get_or_create(conversation_id)
        state = previous.model_copy(
            update={
                "history": previous.history + (Turn(role="user", text=text, at=now),),
                "last_activity": now,
            }
        )

        try:
            outcome = self._run_turn(state, text, now)
        except Exception:
            logger.exception("conversation_turn_failed conversation_id=%s", conversation_id)
            outcome = self._failure(state)

        reply = await self._phraser.phrase(
            outcome.reply, text, {"step": outcome.state.step, **(context or {})}
        )
        final = outcome.state.model_copy(
            update={
                "history": outcome.state.history + (Turn(role="assistant", text=reply, at=now),),
                "attempts": self._next_attempts(previous, outcome.state),
            }
        )
        self._store.save(final)
        self._store.evict_idle()

        return TurnResult(
            conversation_id=conversation_id,
            reply=reply,
            success=outcome.success,
            step=final.step,
            appointment_booked=outcome.appointment is not None,
            appointment=outcome.appointment,
            needs_human_help=outcome.needs_human_help,
            escalation_reason=outcome.escalation_reason,
            is_emergency=outcome.is_emergency,
            alternatives=outcome.alternatives,
            no_show_risk=outcome.no_show_risk,
        )

    def _next_attempts(self, previous: ConversationState, current: ConversationState) -> int:
        if current.step == "completed" or current.step != previous.step:
            return 0
        return previous.attempts + 1

    def _run_turn(self, state: ConversationState, text: str, now: datetime) -> _Outcome:
        if is_filler_only(text):
            return _Outcome(state=state, reply="Take your time, I'm here when you're ready.")

        asked = self._asked_field(state)
        working_text, rejected = text, []
        correcting = is_correction(text)
        if correcting:
            working_text, rejected = strip_rejected(text)

        extracted = extract_entities(working_text)
        found = extracted.pop("action", None)
        action = found.value if found else state.request
        self._answer_fallback(asked, working_text, extracted)

        if correcting:
            state = self._apply_correction(state, extracted, rejected)

        confirm = self._answered_fields(asked, extracted)
        state = apply_update(state, extracted, confirm)

        if is_frustrated(text) or state.attempts >= self._settings.max_same_step_attempts:
            logger.info(
                "conversation_escalated conversation_id=%s reason=user_frustration step=%s",
                state.conversation_id,
                state.step,
            )
            return _Outcome(
                state=state,
                reply=(
                    "I'm sorry this is taking longer than it should. "
                    "Let me connect you with someone from our front desk who can finish this with you."
                ),
                needs_human_help=True,
                escalation_reason="user_frustration",
                is_emergency=state.data.is_emergency,
            )

        if state.step == "completed" and not extracted and action is None:
            return _Outcome(
                state=state,
                reply="You're all set. Is there anything else I can help you with?",
            )

        if action in ("cancel", "reschedule"):
            return self._cancel_or_reschedule(state, action)
        if state.request:
            state = state.model_copy(update={"request": None})
        if state.data.is_emergency:
            return self._emergency_booking(state, now)
        if state.pending_appointment or state.suggested_slots:
            picked = bool(state.suggested_slots) and bool(ORDINAL_PATTERN.search(text))
            if is_affirmative(text) or (picked and not is_negative(text)):
                return self._confirm_booking(state, text, now)
        if is_negative(text) and state.suggested_slots:
            return self._request_alternatives(state)
        if state.data.preferred_date and state.data.preferred_time:
            return self._check_and_book(state, now)
        return self._gather_info(state)

    def _asked_field(self, state: ConversationState) -> str | None:
        if state.step in FIELD_FOR_STEP:
            return FIELD_FOR_STEP[state.step]
        if state.step == "correcting":
            missing = missing_fields(state.data)
            return missing[0] if missing else None
        return None

    def _answer_fallback(
        self, asked: str | None, text: str, extracted: dict[str, Extraction]
    ) -> None:
        """Accept a bare answer ("Jane Doe", "10") to the question just asked."""
        stripped = text.strip().strip(".!")
        if asked == "patient_name" and "patient_name" not in extracted:
            words = stripped.split()
            plain = [word.replace("'", "").replace("-", "") for word in words]
            if 0 < len(words) <= 3 and all(word.isalpha() for word in plain):
                name = clean_name(stripped)
                if name:
                    extracted["patient_name"] = Extraction("patient_name", name)
        elif asked == "preferred_time" and "preferred_time" not in extracted:
            if stripped.replace(":", "").isdigit() and len(stripped) <= 5:
                extracted["preferred_time"] = Extraction("preferred_time", stripped)

    def _answered_fields(self, asked: str | None, extracted: dict[str, Extraction]) -> set[str]:
        if asked == "contact":
            return {name for name in ("patient_phone", "patient_email") if name in extracted}
        if asked and asked in extracted:
            return {asked}
        return set()

    def _apply_correction(
        self,
        state: ConversationState,
        extracted: dict[str, Extraction],
        rejected: list[str],
    ) -> ConversationState:
        rejected_fields = set()
        for phrase in rejected:
            rejected_fields.update(name for name in extract_entities(phrase) if name != "action")
        cleared = (rejected_fields | set(extracted)) & state.confirmed_fields
        kept = {
            name: getattr(state.data, name)
            for name in state.confirmed_fields - cleared
            if name in BOOKING_FIELDS
        }
        logger.info(
            "conversation_correction conversation_id=%s cleared=%s kept=%s",
            state.conversation_id,
            sorted(cleared),
            sorted(kept),
        )
        return state.model_copy(
            update={
                "step": "correcting",
                "data": BookingData(**kept),
                "confirmed_fields": frozenset(kept),
                "pending_appointment": None,
                "suggested_slots": (),
            }
        )

    def _resolve_start(self, state: ConversationState, now: datetime) -> datetime | str:
        """Return the requested start, or the name of the field that did not parse."""
        try:
            day = resolve_date(state.data.preferred_date, now.date())
        except DateParseError:
            return "preferred_date"
        try:
            at = resolve_time(state.data.preferred_time)
        except DateParseError:
            return "preferred_time"
        return datetime.combine(day, at)

    def _check_and_book(self, state: ConversationState, now: datetime) -> _Outcome:
        start = self._resolve_start(state, now)
        if isinstance(start, str):
            return self._reprompt_unparsed(state, start)

        duration = duration_for(state.data.procedure_type)
        result = self._availability.check_availability(start, duration)
        if not result.available:
            logger.info(
                "slot_unavailable conversation_id=%s start=%s reason=%s",
                state.conversation_id,
                start.isoformat(),
                result.reason,
            )
            return self._offer_alternatives(
                state, start, duration, f"I'm sorry, {describe_time(start)} isn't available."
            )

        pending = PendingAppointment(
            start=start,
            duration_minutes=duration,
            procedure_type=state.data.procedure_type or "general",
            practitioner_id=result.practitioner_id,
        )
        state = state.model_copy(update={"pending_appointment": pending, "suggested_slots": ()})
        if self._ready_to_commit(state):
            return self._commit(state, pending, now)
        return self._ask_next_missing(state, f"Good news, {describe_time(start)} is open.")

    def _confirm_booking(self, state: ConversationState, text: str, now: datetime) -> _Outcome:
        pending = state.pending_appointment
        if state.suggested_slots:
            slot = state.suggested_slots[choose_ordinal(text, len(state.suggested_slots))]
            pending = PendingAppointment(
                start=slot.start,
                duration_minutes=int((slot.end - slot.start).total_seconds() // 60),
                procedure_type=state.data.procedure_type or "general",
                practitioner_id=slot.practitioner_id,
            )

        restated = {"preferred_date", "preferred_time"}
        if state.data.procedure_type:
            restated.add("procedure_type")
        state = state.model_copy(
            update={
                "pending_appointment": pending,
                "suggested_slots": (),
                "data": state.data.model_copy(
                    update={
                        "preferred_date": pending.start.strftime("%m/%d/%Y"),
                        "preferred_time": pending.start.strftime("%H:%M"),
                    }
                ),
                "confirmed_fields": state.confirmed_fields | restated,
            }
        )
        if self._ready_to_commit(state):
            return self._commit(state, pending, now)
        return self._ask_next_missing(state, f"Great, I'll hold {describe_time(pending.start)}.")

    def _emergency_booking(self, state: ConversationState, now: datetime) -> _Outcome:
        pending = state.pending_appointment
        if pending is None or pending.procedure_type != "emergency":
            slots = self._availability.find_next_available_slots(
                now,
                self._settings.emergency_duration_minutes,
                count=1,
                lookahead_days=self._settings.emergency_lookahead_days,
            )
            if not slots:
                logger.warning(
                    "emergency_no_slot conversation_id=%s", state.conversation_id
                )
                return _Outcome(
                    state=state,
                    reply=(
                        "I'm so sorry you're dealing with this. We don't have an immediate "
                        "opening, so I'm connecting you with our on-call team right now. If you "
                        "have trouble breathing or bleeding that won't stop, call 911."
                    ),
                    needs_human_help=True,
                    escalation_reason="no_emergency_slot",
                    is_emergency=True,
                )
            slot = slots[0]
            pending = PendingAppointment(
                start=slot.start,
                duration_minutes=self._settings.emergency_duration_minutes,
                procedure_type="emergency",
                practitioner_id=slot.practitioner_id,
            )
            state = state.model_copy(update={"pending_appointment": pending, "suggested_slots": ()})

        if self._ready_to_commit(state):
            return self._commit(state, pending, now, emergency=True)
        outcome = self._ask_next_missing(
            state,
            f"I'm sorry you're in pain. I can see you as soon as {describe_time(pending.start)}.",
            skip=("preferred_date", "preferred_time", "procedure_type"),
        )
        outcome.is_emergency = True
        return outcome

    def _request_alternatives(self, state: ConversationState) -> _Outcome:
        last = max(slot.start for slot in state.suggested_slots)
        duration = duration_for(state.data.procedure_type)
        slots = self._availability.find_next_available_slots(
            last + timedelta(minutes=self._settings.slot_granularity_minutes), duration, count=3
        )
        if not slots:
            return self._no_openings(state)
        state = state.model_copy(
            update={"suggested_slots": tuple(slots), "pending_appointment": None, "step": "confirming"}
        )
        return _Outcome(
            state=state,
            reply=f"No problem. I also have {_describe_slots(slots)}. Would any of those work?",
            alternatives=slots,
        )

    def _gather_info(self, state: ConversationState) -> _Outcome:
        field_name = missing_fields(state.data)[0]
        step = state.step if state.step == "correcting" else STEP_FOR_FIELD[field_name]

        if not state.history[:-1] and field_name == "preferred_date" and not state.data.procedure_type:
            reply = "Hi! I can help you schedule a dental appointment. " + QUESTIONS[field_name]
        elif state.step == "correcting":
            reply = "No problem, let's fix that. " + QUESTIONS[field_name]
        elif field_name == "preferred_date" and state.data.procedure_type:
            reply = f"I can help you book a {state.data.procedure_type}. " + QUESTIONS[field_name]
        else:
            reply = QUESTIONS[field_name]
        return _Outcome(state=state.model_copy(update={"step": step}), reply=reply)

    def _cancel_or_reschedule(self, state: ConversationState, action: str) -> _Outcome:
        verb = "cancel" if action == "cancel" else "move"
        if state.data.patient_name and state.data.has_contact():
            reply = (
                f"Thanks, {state.data.patient_name}. I've passed your request to {verb} your "
                "appointment to our front desk, and they'll confirm with you shortly."
            )
            logger.info(
                "appointment_change_requested conversation_id=%s request=%s",
                state.conversation_id,
                action,
            )
            return _Outcome(
                state=state.model_copy(update={"request": None}),
                reply=reply,
                needs_human_help=True,
                escalation_reason=action,
            )
        missing = "patient_name" if not state.data.patient_name else "contact"
        return _Outcome(
            state=state.model_copy(update={"step": STEP_FOR_FIELD[missing], "request": action}),
            reply=f"I can help you {verb} your appointment. " + QUESTIONS[missing],
        )

    def _ready_to_commit(self, state: ConversationState) -> bool:
        return bool(state.data.patient_name and state.data.has_contact())

    def _ask_next_missing(
        self,
        state: ConversationState,
        lead: str,
        skip: tuple[str, ...] = ("preferred_date", "preferred_time"),
    ) -> _Outcome:
        missing = [name for name in missing_fields(state.data) if name not in skip]
        field_name = missing[0]
        return _Outcome(
            state=state.model_copy(update={"step": STEP_FOR_FIELD[field_name]}),
            reply=f"{lead} {QUESTIONS[field_name]}",
        )

    def _reprompt_unparsed(self, state: ConversationState, field_name: str) -> _Outcome:
        data = state.data.model_copy(update={field_name: None})
        what = "date" if field_name == "preferred_date" else "time"
        return _Outcome(
            state=state.model_copy(
                update={
                    "data": data,
                    "confirmed_fields": state.confirmed_fields - {field_name},
                    "step": STEP_FOR_FIELD[field_name],
                }
            ),
            reply=f"Sorry, I didn't catch that {what}. {QUESTIONS[field_name]}",
        )

    def _offer_alternatives(
        self, state: ConversationState, start: datetime, duration: int, lead: str
    ) -> _Outcome:
        slots = self._availability.find_next_available_slots(start, duration, count=2)
        if not slots:
            return self._no_openings(state)
        state = state.model_copy(
            update={"suggested_slots": tuple(slots), "pending_appointment": None, "step": "confirming"}
        )
        return _Outcome(
            state=state,
            reply=f"{lead} The closest openings are {_describe_slots(slots)}. Would either of those work?",
            alternatives=slots,
            is_emergency=state.data.is_emergency,
        )

    def _no_openings(self, state: ConversationState) -> _Outcome:
        logger.warning("no_openings conversation_id=%s", state.conversation_id)
        return _Outcome(
            state=state.model_copy(update={"suggested_slots": (), "pending_appointment": None}),
            reply=(
                "I couldn't find an opening in the next couple of weeks. "
                "Let me connect you with our front desk so they can fit you in."
            ),
            needs_human_help=True,
            escalation_reason="no_availability",
            is_emergency=state.data.is_emergency,
        )

    def _commit(
        self,
        state: ConversationState,
        pending: PendingAppointment,
        now: datetime,
        emergency: bool = False,
    ) -> _Outcome:
        data = state.data
        patient = self._patients.find_by_contact(phone=data.patient_phone, email=data.patient_email)
        if patient is None:
            patient = self._patients.create(
                PatientCreate(name=data.patient_name, phone=data.patient_phone, email=data.patient_email)
            )

        end = pending.start + timedelta(minutes=pending.duration_minutes)
        check = self._availability.check_availability(
            pending.start,
            pending.duration_minutes,
            practitioner_id=pending.practitioner_id,
            patient_id=patient.id,
        )
        if not check.available:
            return self._offer_alternatives(
                state,
                pending.start,
                pending.duration_minutes,
                f"I'm sorry, {describe_time(pending.start)} is no longer available.",
            )

        try:
            appointment = self._appointments.create(
                AppointmentCreate(
                    patient_id=patient.id,
                    practitioner_id=check.practitioner_id,
                    start_time=pending.start,
                    end_time=end,
                    procedure_type=pending.procedure_type,
                    origin="conversation",
                    priority="high" if emergency else "normal",
                )
            )
        except SlotUnavailableError:
            return self._offer_alternatives(
                state,
                pending.start,
                pending.duration_minutes,
                f"I'm sorry, {describe_time(pending.start)} was just taken.",
            )

        risk = predict_no_show(
            pending.start,
            self._patients.find_history(patient.id),
            now,
            self._settings.no_show,
        )
        logger.info(
            "booking_committed conversation_id=%s appointment_id=%s start=%s no_show_risk=%s",
            state.conversation_id,
            appointment.id,
            appointment.start_time.isoformat(),
            risk.risk,
        )

        when = describe_time(appointment.start_time)
        if data.patient_email:
            self._notifier.notify(
                data.patient_email,
                f"Hi {data.patient_name}, your {pending.procedure_type} appointment is booked for {when}.",
                subject="Appointment confirmed",
            )

        completed = state.model_copy(
            update={
                "step": "completed",
                "data": BookingData(),
                "confirmed_fields": frozenset(),
                "pending_appointment": None,
                "suggested_slots": (),
                "failed_attempts": 0,
            }
        )
        reply = f"You're booked, {data.patient_name}! Your {pending.procedure_type} is on {when}."
        if emergency:
            reply += " Please arrive a few minutes early and bring a list of any medications."
        return _Outcome(
            state=completed,
            reply=reply,
            appointment=appointment,
            is_emergency=emergency,
            no_show_risk=risk,
        )

    def _failure(self, state: ConversationState) -> _Outcome:
        failed = state.failed_attempts + 1
        state = state.model_copy(update={"failed_attempts": failed})
        if failed >= self._settings.max_attempts:
            return _Outcome(
                state=state,
                reply=(
                    "I'm sorry, I'm having trouble with our scheduling system. "
                    "I'm connecting you with a member of our team."
                ),
                success=False,
                needs_human_help=True,
                escalation_reason="system_error",
            )
        return _Outcome(
            state=state,
            reply="I'm sorry, something went wrong on our end. Could you say that again?",
            success=False,
        )

