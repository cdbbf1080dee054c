from fastapi import APIRouter, Depends, HTTPException

from ..engine import SchedulingEngine
from ..schemas import EmergencyReport, QueueStatus, TriageRequest, TriageResult, TriageStatusUpdate
from ..services.emergency_queue import TriageNotFoundError
from .deps import get_scheduler

router = APIRouter()


@router.post("/triage", response_model=TriageResult)
def triage(
    payload: TriageRequest, scheduler: SchedulingEngine = Depends(get_scheduler)
) -> TriageResult:
    return scheduler.triage_patient(payload.patient, payload.symptoms)


@router.get("/triage/queue", response_model=QueueStatus)
def queue_status(scheduler: SchedulingEngine = Depends(get_scheduler)) -> QueueStatus:
    return scheduler.get_queue_status()


@router.get("/triage/report", response_model=EmergencyReport)
def emergency_report(scheduler: SchedulingEngine = Depends(get_scheduler)) -> EmergencyReport:
    return scheduler.emergency_report()


@router.get("/triage/{triage_id}", response_model=TriageResult)
def get_triage(triage_id: str, scheduler: SchedulingEngine = Depends(get_scheduler)) -> TriageResult:
    try:
        return scheduler.get_triage(triage_id)
    except TriageNotFoundError:
        raise HTTPException(status_code=404, detail="Triage entry not found")


@router.patch("/triage/{triage_id}", response_model=TriageResult)
def update_triage(
    triage_id: str,
    payload: TriageStatusUpdate,
    scheduler: SchedulingEngine = Depends(get_scheduler),
) -> TriageResult:
    try:
        return scheduler.update_emergency_status(triage_id, payload.status, payload.notes)
    except TriageNotFoundError:
        raise HTTPException(status_code=404, detail="Triage entry not found")
