from datetime import date, datetime

from fastapi import APIRouter, Depends, Query

from ..engine import SchedulingEngine
from ..schemas import AvailabilityResult, Slot
from .deps import get_scheduler

router = APIRouter()


@router.get("/slots", response_model=list[Slot])
def list_slots(
    day: date,
    duration: int = Query(30, ge=5, le=240),
    scheduler: SchedulingEngine = Depends(get_scheduler),
) -> list[Slot]:
    return scheduler.day_slots(day, duration)


@router.get("/availability", response_model=AvailabilityResult)
def availability(
    start: datetime,
    duration: int = Query(30, ge=5, le=240),
    scheduler: SchedulingEngine = Depends(get_scheduler),
) -> AvailabilityResult:
    return scheduler.check_availability(start, duration)


@router.get("/alternatives", response_model=list[Slot])
def alternatives(
    start: datetime,
    duration: int = Query(30, ge=5, le=240),
    count: int = Query(2, ge=1, le=10),
    scheduler: SchedulingEngine = Depends(get_scheduler),
) -> list[Slot]:
    return scheduler.find_alternatives(start, duration, count)
