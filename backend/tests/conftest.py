import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from dental_scheduler.config import Settings
from dental_scheduler.db import init_db, make_engine, make_session_factory
from dental_scheduler.engine import SchedulingEngine
from dental_scheduler.main import create_app
from dental_scheduler.schemas import AppointmentCreate, PatientCreate

# Monday morning, opening time.
NOW = datetime(2026, 10, 19, 9, 0)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def settings() -> Settings:
    # Explicit values so a developer's environment cannot reach the network.
    return Settings(
        anthropic_api_key="",
        smtp_host="",
        smtp_from="",
        staff_contacts=[],
        practitioner_ids=["dr-smith"],
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite+pysqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def scheduler(session_factory, settings, clock) -> SchedulingEngine:
    return SchedulingEngine(session_factory=session_factory, config=settings, clock=clock)


@pytest.fixture
def client(scheduler):
    return TestClient(create_app(scheduler))


@pytest.fixture
def book(scheduler):
    """Insert an appointment straight into the store."""

    def _book(
        start: datetime,
        minutes: int = 60,
        procedure_type: str = "cleaning",
        status: str = "scheduled",
        patient_id: str | None = None,
        practitioner_id: str = "dr-smith",
        priority: str = "normal",
    ):
        return scheduler.appointments.create(
            AppointmentCreate(
                patient_id=patient_id,
                practitioner_id=practitioner_id,
                start_time=start,
                end_time=start + timedelta(minutes=minutes),
                procedure_type=procedure_type,
                status=status,
                origin="human",
                priority=priority,
            )
        )

    return _book


@pytest.fixture
def make_patient(scheduler):
    def _make(name: str = "Pat Lee", phone: str | None = "555-000-1111", email: str | None = None):
        return scheduler.patients.create(PatientCreate(name=name, phone=phone, email=email))

    return _make


@pytest.fixture
def say(scheduler):
    def _say(text: str, conversation_id: str = "conv-1"):
        return asyncio.run(scheduler.handle_utterance(conversation_id, text))

    return _say
