# scripts/run_scheduler.py
from __future__ import annotations

import asyncio
import logging
import signal

from property_import.db import AsyncSessionLocal, engine
from property_import.jobs.scheduler import ScheduleGuard
from property_import.models import Base
from property_import.service_layer.use_cases.import_properties import ImportOrchestrator


def _quiet_logging() -> None:
    # Root defaults
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    # Quiet the usual offenders
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)


async def main() -> None:
    _quiet_logging()
    log = logging.getLogger(__name__)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    guard = ScheduleGuard.from_settings(ImportOrchestrator(AsyncSessionLocal))
    if not guard.start():
        raise SystemExit(1)
    log.info("Scheduler started: %s", guard.get_status())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await stop.wait()
    log.info("Shutting down...")
    await guard.stop()
    await guard.orchestrator.aclose()
    log.info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
