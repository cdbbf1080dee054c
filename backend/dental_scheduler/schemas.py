from datetime import date, datetime, time
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Step = Literal[
    "initial",
    "collecting_date",
    "collecting_time",
    "collecting_type",
    "collecting_name",
    "collecting_contact",
    "confirming",
    "completed",
    "correcting",
]
AppointmentStatus = Literal[
    "scheduled",
    "confirmed",
    "in-progress",
    "completed",
    "cancelled",
    "no-show",
    "rescheduled",
]
ACTIVE_STATUSES = ("scheduled", "confirmed", "in-progress", "completed")
Origin = Literal["human", "conversation", "triage"]
ConflictKind = Literal["practitioner_double_booked", "patient_double_booked"]
TriageCategory = Literal["critical", "urgent", "moderate", "minor"]
TriageStatus = Literal["intake", "queued", "slot_found", "no_slot", "resolved"]
RiskTier = Literal["low", "medium", "high"]


class BreakInterval(BaseModel):
    start: time
    end: time
    label: Optional[str] = None


class DayHours(BaseModel):
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    breaks: list[BreakInterval] = []
    closed: bool = False


class WorkingHours(BaseModel):
    weekly: dict[int, DayHours]
    holidays: set[date] = set()
    special_hours: dict[date, DayHours] = {}

    def for_date(self, day: date) -> DayHours | None:
        """Special hours win over holidays, holidays over the weekly rule."""
        if day in self.special_hours:
            hours = self.special_hours[day]
        elif day in self.holidays:
            return None
        else:
            hours = self.weekly.get(day.weekday())
        if hours is None or hours.closed:
            return None
        return hours


class Slot(BaseModel):
    start: datetime
    end: datetime
    practitioner_id: str
    available: bool = True


class PatientCreate(BaseModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class PatientOut(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AppointmentCreate(BaseModel):
    patient_id: Optional[str] = None
    practitioner_id: str
    start_time: datetime
    end_time: datetime
    procedure_type: str = "general"
    status: AppointmentStatus = "scheduled"
    origin: Origin = "conversation"
    triage_id: Optional[str] = None
    priority: Literal["normal", "high"] = "normal"


class AppointmentOut(AppointmentCreate):
    id: str
    status_reason: Optional[str] = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class EmergencyHoldOut(BaseModel):
    id: str
    practitioner_id: str
    start_time: datetime
    end_time: datetime
    claimed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Conflict(BaseModel):
    appointment: AppointmentOut
    kind: ConflictKind
    reason: str


class ConflictReport(BaseModel):
    conflicts: list[Conflict] = []

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)


class AvailabilityResult(BaseModel):
    available: bool
    reason: Optional[str] = None
    practitioner_id: Optional[str] = None
    conflicts: list[Conflict] = []
    warnings: list[str] = []


class NoShowRisk(BaseModel):
    risk: RiskTier
    score: int
    factors: dict[str, Any] = {}


class SymptomReport(BaseModel):
    description: str = ""
    pain_level: int = Field(default=0, ge=0, le=10)
    swelling: bool = False
    bleeding: bool = False
    fever: bool = False
    # None means the question was not answered; scored as "cannot".
    can_eat: Optional[bool] = None
    sleep_disruption: bool = False
    medication_helps: Optional[bool] = None
    duration: Optional[str] = None


class PatientInfo(BaseModel):
    id: Optional[str] = None
    name: str = "Unknown"
    phone: Optional[str] = None
    email: Optional[str] = None


class TriageProtocol(BaseModel):
    name: str
    immediate_actions: list[str]
    timeframe: str
    supplies: list[str] = []


class TriageResult(BaseModel):
    id: str
    timestamp: datetime
    patient: PatientInfo
    symptoms: SymptomReport
    severity: int
    category: TriageCategory
    priority: int
    response_time: str
    queue_position: Optional[int] = None
    estimated_wait_minutes: Optional[int] = None
    protocol: Optional[TriageProtocol] = None
    instructions: list[str] = []
    requires_emergency_services: bool = False
    status: TriageStatus = "intake"
    appointment_slot: Optional[Slot] = None
    appointment_id: Optional[str] = None
    bumped_appointment_id: Optional[str] = None
    notes: Optional[str] = None
    resolved_at: Optional[datetime] = None


class QueueEntryOut(BaseModel):
    id: str
    position: int
    category: TriageCategory
    wait_minutes: Optional[int] = None
    patient: str


class QueueStatus(BaseModel):
    queue_length: int
    by_category: dict[str, int]
    entries: list[QueueEntryOut]


class EmergencyReport(BaseModel):
    generated_at: datetime
    active_emergencies: int
    queue_status: QueueStatus
    average_wait_minutes: dict[str, float]


class BookingData(BaseModel):
    procedure_type: Optional[str] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None
    is_emergency: bool = False

    model_config = ConfigDict(frozen=True)

    def has_contact(self) -> bool:
        return bool(self.patient_phone or self.patient_email)


class PendingAppointment(BaseModel):
    start: datetime
    duration_minutes: int
    procedure_type: str = "general"
    practitioner_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class Turn(BaseModel):
    role: Literal["user", "assistant"]
    text: str
    at: datetime

    model_config = ConfigDict(frozen=True)


class ConversationState(BaseModel):
    conversation_id: str
    step: Step = "initial"
    data: BookingData = BookingData()
    confirmed_fields: frozenset[str] = frozenset()
    history: tuple[Turn, ...] = ()
    attempts: int = 0
    failed_attempts: int = 0
    last_activity: datetime
    pending_appointment: Optional[PendingAppointment] = None
    suggested_slots: tuple[Slot, ...] = ()
    # "cancel" or "reschedule" while the request is being collected.
    request: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class TurnResult(BaseModel):
    conversation_id: str
    reply: str
    success: bool
    step: Step
    appointment_booked: bool = False
    appointment: Optional[AppointmentOut] = None
    needs_human_help: bool = False
    escalation_reason: Optional[str] = None
    is_emergency: bool = False
    alternatives: list[Slot] = []
    no_show_risk: Optional[NoShowRisk] = None


class ChatRequest(BaseModel):
    conversation_id: Optional[str] = None
    message: str
    context: dict[str, Any] = {}


class TriageRequest(BaseModel):
    patient: PatientInfo
    symptoms: SymptomReport


class TriageStatusUpdate(BaseModel):
    status: TriageStatus
    notes: Optional[str] = None
