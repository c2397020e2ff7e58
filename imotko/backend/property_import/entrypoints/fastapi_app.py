# property_import/entrypoints/fastapi_app.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from ..config import settings
from ..db import AsyncSessionLocal, engine
from ..jobs.scheduler import ScheduleGuard
from ..models import Base
from ..service_layer.use_cases.import_properties import ImportOrchestrator
from .api.routers import health, import_jobs

log = logging.getLogger(__name__)


def create_app(guard: ScheduleGuard | None = None, *, start_scheduler: bool = True) -> FastAPI:
    app = FastAPI(title="Imotko - Property Import")
    app.state.guard = guard

    @app.on_event("startup")
    async def _startup() -> None:
        # Single place where DB tables are created in dev.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        if app.state.guard is None:
            app.state.guard = ScheduleGuard.from_settings(ImportOrchestrator(AsyncSessionLocal))
        if start_scheduler:
            app.state.guard.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        g: ScheduleGuard | None = app.state.guard
        if g is None:
            return
        await g.stop()
        await g.orchestrator.aclose()
        log.info("Import scheduler shut down")

    # Routers
    app.include_router(health.router)
    app.include_router(import_jobs.router)

    return app
