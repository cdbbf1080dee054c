from fastapi import Request

from ..engine import SchedulingEngine


def get_scheduler(request: Request) -> SchedulingEngine:
    return request.app.state.scheduler
