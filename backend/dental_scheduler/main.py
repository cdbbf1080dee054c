import asyncio
import logging

from fastapi import FastAPI

from .db import init_db
from .engine import SchedulingEngine
from .routes import api_router

logger = logging.getLogger(__name__)


async def _cleanup_loop(scheduler: SchedulingEngine, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            scheduler.cleanup()
        except Exception:
            logger.exception("cleanup_failed")


def create_app(scheduler: SchedulingEngine | None = None) -> FastAPI:
    owns_database = scheduler is None
    scheduler = scheduler or SchedulingEngine()

    app = FastAPI(title="Dental Scheduler API")
    app.state.scheduler = scheduler

    @app.on_event("startup")
    async def on_startup() -> None:
        if owns_database:
            init_db()
        app.state.cleanup_task = asyncio.create_task(
            _cleanup_loop(scheduler, scheduler.settings.cleanup_interval_seconds)
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        task = getattr(app.state, "cleanup_task", None)
        if task is not None:
            task.cancel()

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
