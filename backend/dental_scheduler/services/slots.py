from datetime import date, datetime, timedelta

from ..schemas import DayHours, Slot, WorkingHours


class WorkingHoursError(ValueError):
    pass


def validate_day_hours(hours: DayHours) -> None:
    if hours.open_time is None or hours.close_time is None:
        raise WorkingHoursError("open and close times are required for an open day")
    if hours.open_time >= hours.close_time:
        raise WorkingHoursError(
            f"open time {hours.open_time} must be before close time {hours.close_time}"
        )
    previous_end = None
    for interval in sorted(hours.breaks, key=lambda b: b.start):
        if interval.start >= interval.end:
            raise WorkingHoursError(f"break {interval.start}-{interval.end} is empty")
        if interval.start < hours.open_time or interval.end > hours.close_time:
            raise WorkingHoursError(
                f"break {interval.start}-{interval.end} falls outside opening hours"
            )
        if previous_end is not None and interval.start < previous_end:
            raise WorkingHoursError("break intervals overlap")
        previous_end = interval.end


def generate_slot_starts(
    day: date,
    hours: DayHours | None,
    duration_minutes: int,
    step_minutes: int = 15,
) -> list[datetime]:
    """Ordered start times on ``day`` for a procedure of ``duration_minutes``.

    Starts are laid out every ``step_minutes`` from opening time. A start is
    dropped when its interval would run past closing time or touch a break.
    A closed day yields an empty list. Invalid hours raise
    ``WorkingHoursError`` before any slot is produced.
    """
    if hours is None or hours.closed:
        return []
    validate_day_hours(hours)
    if duration_minutes <= 0 or step_minutes <= 0:
        raise ValueError("duration and step must be positive")

    opening = datetime.combine(day, hours.open_time)
    closing = datetime.combine(day, hours.close_time)
    breaks = [
        (datetime.combine(day, b.start), datetime.combine(day, b.end)) for b in hours.breaks
    ]
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)

    starts = []
    current = opening
    while current + duration <= closing:
        end = current + duration
        if not any(current < break_end and break_start < end for break_start, break_end in breaks):
            starts.append(current)
        current += step
    return starts


def generate_slots(
    day: date,
    working_hours: WorkingHours,
    duration_minutes: int,
    practitioner_id: str,
    step_minutes: int = 15,
) -> list[Slot]:
    duration = timedelta(minutes=duration_minutes)
    return [
        Slot(start=start, end=start + duration, practitioner_id=practitioner_id)
        for start in generate_slot_starts(
            day, working_hours.for_date(day), duration_minutes, step_minutes
        )
    ]


def is_within_working_hours(start: datetime, end: datetime, working_hours: WorkingHours) -> bool:
    hours = working_hours.for_date(start.date())
    if hours is None:
        return False
    validate_day_hours(hours)
    opening = datetime.combine(start.date(), hours.open_time)
    closing = datetime.combine(start.date(), hours.close_time)
    if start < opening or end > closing:
        return False
    for interval in hours.breaks:
        break_start = datetime.combine(start.date(), interval.start)
        break_end = datetime.combine(start.date(), interval.end)
        if start < break_end and break_start < end:
            return False
    return True
