# property_import/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import Settings, settings
from ..errors import ImportAlreadyRunningError
from ..models import TriggerSource
from ..service_layer.use_cases.import_properties import ImportOrchestrator, RunSummary

log = logging.getLogger(__name__)

JOB_ID = "property_import"


class ScheduleGuard:
    """
    Single-flight wrapper around ImportOrchestrator.

    Cron firings and manual triggers both go through run_once(); the lock is
    released in every outcome, including fatal run errors.
    """

    def __init__(
        self,
        orchestrator: ImportOrchestrator,
        *,
        schedule: str = "0 0 * * *",
        timezone: str = "Europe/Skopje",
        stop_timeout_s: float = 10.0,
    ):
        self.orchestrator = orchestrator
        self.schedule = schedule
        self.timezone = timezone
        self.stop_timeout_s = stop_timeout_s
        self._lock = asyncio.Lock()
        self._cancel = asyncio.Event()
        self._scheduler: AsyncIOScheduler | None = None

    @classmethod
    def from_settings(cls, orchestrator: ImportOrchestrator, s: Settings = settings) -> "ScheduleGuard":
        return cls(
            orchestrator,
            schedule=s.IMPORT_CRON_SCHEDULE,
            timezone=s.IMPORT_TIMEZONE,
            stop_timeout_s=s.IMPORT_STOP_TIMEOUT_S,
        )

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def is_scheduled(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # -------------------------
    # Scheduling
    # -------------------------

    def start(self) -> bool:
        """Registers the cron job. Returns False (and logs) on a bad expression."""
        if self.is_scheduled:
            log.warning("Property import job is already scheduled")
            return True

        try:
            trigger = CronTrigger.from_crontab(self.schedule, timezone=self.timezone)
        except (ValueError, LookupError) as e:
            log.error("Invalid cron schedule %r (%s): job not scheduled", self.schedule, e)
            return False

        self._cancel.clear()
        sched = AsyncIOScheduler(timezone=self.timezone)
        sched.add_job(self._on_cron, trigger, id=JOB_ID, max_instances=1, coalesce=True)
        sched.start()
        self._scheduler = sched

        log.info("Property import scheduled: %s (%s)", self.schedule, self.timezone)
        return True

    async def _on_cron(self) -> None:
        if self.is_running:
            log.warning("Skipping scheduled property import: previous run still in progress")
            return
        try:
            await self.run_once(TriggerSource.cron.value)
        except ImportAlreadyRunningError:
            log.warning("Skipping scheduled property import: previous run still in progress")
        except Exception as e:
            # already recorded in the ledger by the orchestrator
            log.error("Scheduled property import failed: %s", e)

    # -------------------------
    # Runs
    # -------------------------

    async def run_once(self, triggered_by: str) -> RunSummary:
        if self._lock.locked():
            raise ImportAlreadyRunningError()

        async with self._lock:
            self._cancel.clear()
            log.info("Property import started (triggered_by=%s)", triggered_by)
            return await self.orchestrator.run(triggered_by, cancel_event=self._cancel)

    async def trigger_manually(self, triggered_by: str = TriggerSource.manual.value) -> RunSummary:
        """Raises ImportAlreadyRunningError instead of queueing behind an active run."""
        log.info("Manual property import triggered by %s", triggered_by)
        return await self.run_once(triggered_by)

    # -------------------------
    # Status / shutdown
    # -------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "is_scheduled": self.is_scheduled,
            "schedule": self.schedule,
            "timezone": self.timezone,
        }

    async def stop(self, timeout_s: float | None = None) -> bool:
        """
        Stops future firings, asks the in-flight run to stop between listings and
        waits (bounded) for it. Returns True when no run is left in flight.
        """
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            log.info("Property import schedule stopped")

        if not self.is_running:
            return True

        self._cancel.set()
        log.info("Waiting for the current import run to finish...")
        deadline = time.monotonic() + (self.stop_timeout_s if timeout_s is None else timeout_s)
        while self.is_running and time.monotonic() < deadline:
            await asyncio.sleep(0.1)

        if self.is_running:
            log.warning("Import run still in progress after stop timeout")
            return False
        log.info("Import run finished")
        return True
