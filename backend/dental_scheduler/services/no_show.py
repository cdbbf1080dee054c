from datetime import datetime
from typing import Sequence

from ..config import NoShowWeights
from ..schemas import AppointmentOut, NoShowRisk


def predict_no_show(
    start: datetime,
    history: Sequence[AppointmentOut],
    now: datetime,
    weights: NoShowWeights | None = None,
) -> NoShowRisk:
    """Advisory no-show risk for a booking at ``start``. Never blocks a booking."""
    weights = weights or NoShowWeights()
    visits = sorted(
        (appt for appt in history if appt.start_time < start), key=lambda a: a.start_time
    )
    score = 0.0

    no_shows = sum(1 for appt in visits if appt.status == "no-show")
    if visits:
        score += no_shows / len(visits) * weights.history_ratio_scale
    recent = visits[-weights.recent_window:]
    recent_no_shows = sum(1 for appt in recent if appt.status == "no-show")
    score += recent_no_shows * weights.recent_no_show

    off_peak = start.hour < weights.early_hour or start.hour > weights.late_hour
    if off_peak:
        score += weights.off_peak_hour

    edge_of_week = start.weekday() in (0, 4)
    if edge_of_week:
        score += weights.edge_of_week

    lead_days = (start - now).days
    if lead_days > weights.long_lead_days:
        score += weights.long_lead_time

    score = max(0.0, min(score, 100.0))
    if score > weights.high_threshold:
        risk = "high"
    elif score > weights.medium_threshold:
        risk = "medium"
    else:
        risk = "low"

    return NoShowRisk(
        risk=risk,
        score=round(score),
        factors={
            "historical_no_shows": no_shows,
            "recent_no_shows": recent_no_shows,
            "time_of_day": "suboptimal" if off_peak else "optimal",
            "day_of_week": "high-risk" if edge_of_week else "normal",
            "lead_time_days": lead_days,
        },
    )
