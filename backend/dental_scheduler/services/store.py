import logging
from datetime import datetime
from typing import Iterable, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..models import Appointment, EmergencyHold, Patient
from ..schemas import (
    AppointmentCreate,
    AppointmentOut,
    EmergencyHoldOut,
    PatientCreate,
    PatientOut,
)

logger = logging.getLogger(__name__)


class SlotUnavailableError(ValueError):
    """The store rejected a booking because the chair time is already taken."""


class AppointmentNotFoundError(LookupError):
    pass


class AppointmentStore(Protocol):
    def find(
        self,
        practitioner_id: str | None = None,
        patient_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: Iterable[str] | None = None,
        procedure_types: Iterable[str] | None = None,
    ) -> list[AppointmentOut]: ...

    def create(self, appointment: AppointmentCreate) -> AppointmentOut: ...

    def update_status(
        self, appointment_id: str, status: str, reason: str | None = None
    ) -> AppointmentOut: ...

    def find_open_holds(self, start: datetime, end: datetime) -> list[EmergencyHoldOut]: ...

    def claim_hold(self, hold_id: str, triage_id: str) -> EmergencyHoldOut | None: ...

    def release_hold(self, hold_id: str, triage_id: str) -> None: ...


class PatientStore(Protocol):
    def find_by_id(self, patient_id: str) -> PatientOut | None: ...

    def find_history(self, patient_id: str) -> list[AppointmentOut]: ...

    def find_by_contact(
        self, phone: str | None = None, email: str | None = None
    ) -> PatientOut | None: ...

    def create(self, patient: PatientCreate) -> PatientOut: ...


class SqlAppointmentStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def find(
        self,
        practitioner_id: str | None = None,
        patient_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: Iterable[str] | None = None,
        procedure_types: Iterable[str] | None = None,
    ) -> list[AppointmentOut]:
        stmt = select(Appointment)
        if practitioner_id:
            stmt = stmt.where(Appointment.practitioner_id == practitioner_id)
        if patient_id:
            stmt = stmt.where(Appointment.patient_id == patient_id)
        # Overlap with [start, end) rather than containment.
        if start is not None:
            stmt = stmt.where(Appointment.end_time > start)
        if end is not None:
            stmt = stmt.where(Appointment.start_time < end)
        if statuses is not None:
            stmt = stmt.where(Appointment.status.in_(list(statuses)))
        if procedure_types is not None:
            stmt = stmt.where(Appointment.procedure_type.in_(list(procedure_types)))
        stmt = stmt.order_by(Appointment.start_time)
        with self._session_factory() as db:
            return [AppointmentOut.model_validate(row) for row in db.scalars(stmt).all()]

    def create(self, appointment: AppointmentCreate) -> AppointmentOut:
        with self._session_factory() as db:
            row = Appointment(**appointment.model_dump())
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.info(
                    "appointment_create_rejected practitioner_id=%s start=%s",
                    appointment.practitioner_id,
                    appointment.start_time.isoformat(),
                )
                raise SlotUnavailableError("Slot already booked") from exc
            db.refresh(row)
            return AppointmentOut.model_validate(row)

    def update_status(
        self, appointment_id: str, status: str, reason: str | None = None
    ) -> AppointmentOut:
        with self._session_factory() as db:
            row = db.get(Appointment, appointment_id)
            if row is None:
                raise AppointmentNotFoundError(appointment_id)
            row.status = status
            row.status_reason = reason
            db.commit()
            db.refresh(row)
            return AppointmentOut.model_validate(row)

    def find_open_holds(self, start: datetime, end: datetime) -> list[EmergencyHoldOut]:
        stmt = (
            select(EmergencyHold)
            .where(
                EmergencyHold.claimed_by.is_(None),
                EmergencyHold.start_time >= start,
                EmergencyHold.start_time <= end,
            )
            .order_by(EmergencyHold.start_time)
        )
        with self._session_factory() as db:
            return [EmergencyHoldOut.model_validate(row) for row in db.scalars(stmt).all()]

    def claim_hold(self, hold_id: str, triage_id: str) -> EmergencyHoldOut | None:
        with self._session_factory() as db:
            result = db.execute(
                update(EmergencyHold)
                .where(EmergencyHold.id == hold_id, EmergencyHold.claimed_by.is_(None))
                .values(claimed_by=triage_id)
                .returning(EmergencyHold)
            )
            hold = result.scalar_one_or_none()
            if hold is None:
                db.rollback()
                return None
            db.commit()
            return EmergencyHoldOut.model_validate(hold)

    def release_hold(self, hold_id: str, triage_id: str) -> None:
        with self._session_factory() as db:
            db.execute(
                update(EmergencyHold)
                .where(EmergencyHold.id == hold_id, EmergencyHold.claimed_by == triage_id)
                .values(claimed_by=None)
            )
            db.commit()
        logger.info("hold_released hold_id=%s triage_id=%s", hold_id, triage_id)

    def add_hold(self, practitioner_id: str, start: datetime, end: datetime) -> EmergencyHoldOut:
        with self._session_factory() as db:
            hold = EmergencyHold(practitioner_id=practitioner_id, start_time=start, end_time=end)
            db.add(hold)
            db.commit()
            db.refresh(hold)
            return EmergencyHoldOut.model_validate(hold)


class SqlPatientStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def find_by_id(self, patient_id: str) -> PatientOut | None:
        with self._session_factory() as db:
            patient = db.get(Patient, patient_id)
            return PatientOut.model_validate(patient) if patient else None

    def find_history(self, patient_id: str) -> list[AppointmentOut]:
        stmt = (
            select(Appointment)
            .where(Appointment.patient_id == patient_id)
            .order_by(Appointment.start_time)
        )
        with self._session_factory() as db:
            return [AppointmentOut.model_validate(row) for row in db.scalars(stmt).all()]

    def find_by_contact(
        self, phone: str | None = None, email: str | None = None
    ) -> PatientOut | None:
        with self._session_factory() as db:
            return _lookup_patient(db, phone, email)

    def create(self, patient: PatientCreate) -> PatientOut:
        with self._session_factory() as db:
            row = Patient(**patient.model_dump())
            db.add(row)
            db.commit()
            db.refresh(row)
            return PatientOut.model_validate(row)


def _lookup_patient(db: Session, phone: str | None, email: str | None) -> PatientOut | None:
    if phone:
        patient = db.scalars(select(Patient).where(Patient.phone == phone)).first()
        if patient:
            return PatientOut.model_validate(patient)
    if email:
        patient = db.scalars(select(Patient).where(Patient.email == email)).first()
        if patient:
            return PatientOut.model_validate(patient)
    return None
