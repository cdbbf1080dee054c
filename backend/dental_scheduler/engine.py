import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable

from sqlalchemy.orm import sessionmaker

from .config import Settings, settings as default_settings
from .db import SessionLocal
from .schemas import (
    AvailabilityResult,
    EmergencyReport,
    PatientInfo,
    QueueStatus,
    Slot,
    SymptomReport,
    TriageResult,
    TurnResult,
)
from .services.availability import AvailabilityService
from .services.conversation import BookingConversation, ConversationStore
from .services.emergency_queue import EmergencyQueueManager, TriageNotFoundError
from .services.llm import ReplyPhraser
from .services.notifications import NotificationGateway
from .services.store import SqlAppointmentStore, SqlPatientStore

logger = logging.getLogger(__name__)


class SchedulingEngine:
    """The surface the request layer talks to.

    Owns the conversation store and the emergency queue for the life of the
    process; appointments and patients live in the SQL store.
    """

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
        notifier: NotificationGateway | None = None,
        phraser: ReplyPhraser | None = None,
    ) -> None:
        self.settings = config or default_settings
        session_factory = session_factory or SessionLocal
        self.appointments = SqlAppointmentStore(session_factory)
        self.patients = SqlPatientStore(session_factory)
        self.notifier = notifier or NotificationGateway(self.settings)
        self.availability = AvailabilityService(self.appointments, self.settings, clock)
        self.conversations = ConversationStore(
            idle_timeout=timedelta(minutes=self.settings.conversation_idle_minutes), clock=clock
        )
        self.booking = BookingConversation(
            self.conversations,
            self.availability,
            self.appointments,
            self.patients,
            notifier=self.notifier,
            phraser=phraser or ReplyPhraser(self.settings),
            config=self.settings,
            clock=clock,
        )
        self.emergencies = EmergencyQueueManager(
            self.appointments,
            self.patients,
            self.availability,
            self.notifier,
            config=self.settings,
            clock=clock,
        )

    async def handle_utterance(
        self, conversation_id: str, text: str, context: dict[str, Any] | None = None
    ) -> TurnResult:
        return await self.booking.handle_utterance(conversation_id, text, context)

    def reset_conversation(self, conversation_id: str) -> bool:
        return self.conversations.reset(conversation_id)

    def check_availability(self, start: datetime, duration_minutes: int = 30) -> AvailabilityResult:
        return self.availability.check_availability(start, duration_minutes)

    def find_alternatives(
        self, start: datetime, duration_minutes: int = 30, count: int = 2
    ) -> list[Slot]:
        return self.availability.find_next_available_slots(start, duration_minutes, count)

    def day_slots(self, day: date, duration_minutes: int = 30) -> list[Slot]:
        return self.availability.day_slots(day, duration_minutes)

    def triage_patient(self, patient: PatientInfo, symptoms: SymptomReport) -> TriageResult:
        return self.emergencies.triage_patient(patient, symptoms)

    def get_triage(self, triage_id: str) -> TriageResult:
        result = self.emergencies.queue.get(triage_id)
        if result is None:
            raise TriageNotFoundError(triage_id)
        return result

    def get_queue_status(self) -> QueueStatus:
        return self.emergencies.get_queue_status()

    def update_emergency_status(
        self, triage_id: str, status: str, notes: str | None = None
    ) -> TriageResult:
        return self.emergencies.update_status(triage_id, status, notes)

    def emergency_report(self) -> EmergencyReport:
        return self.emergencies.emergency_report()

    def cleanup(self) -> dict[str, int]:
        conversations = self.conversations.evict_idle()
        triage = self.emergencies.purge_resolved()
        logger.info("cleanup conversations_evicted=%s triage_purged=%s", conversations, triage)
        return {"conversations_evicted": conversations, "triage_purged": triage}
