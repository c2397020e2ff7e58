# property_import/adapters/repos/import_runs.py
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import ImportJobExecution, RunStatus

JOB_NAME = "property_import"


class ImportRunRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def start_run(self, triggered_by: str, meta: dict[str, Any] | None = None) -> ImportJobExecution:
        run = ImportJobExecution(
            job_name=JOB_NAME,
            triggered_by=triggered_by,
            started_at=datetime.utcnow(),
            status=RunStatus.running,
            summary_json=json.dumps({"meta": meta or {}}),
        )
        self.session.add(run)
        await self.session.flush()
        return run

    async def _previous_failures(self, run: ImportJobExecution) -> int:
        q = (
            select(ImportJobExecution)
            .where(ImportJobExecution.job_name == JOB_NAME)
            .where(ImportJobExecution.id != run.id)
            .where(ImportJobExecution.status != RunStatus.running)
            .order_by(ImportJobExecution.started_at.desc(), ImportJobExecution.id.desc())
            .limit(1)
        )
        prev = (await self.session.execute(q)).scalars().first()
        if prev is not None and prev.status == RunStatus.failed:
            return int(prev.consecutive_failures or 0)
        return 0

    def _apply_stats(self, run: ImportJobExecution, stats: dict[str, Any]) -> None:
        run.total = int(stats.get("total", 0))
        run.processed = int(stats.get("processed", 0))
        run.created = int(stats.get("created", 0))
        run.duplicates = int(stats.get("duplicates", 0))
        run.failed = int(stats.get("failed", 0))
        errors = stats.get("errors") or []
        run.errors_json = json.dumps(errors, ensure_ascii=False, default=str) if errors else None

    async def finish_run(self, run: ImportJobExecution, summary: dict[str, Any]) -> ImportJobExecution:
        stats = summary.get("stats") or {}
        run.status = RunStatus.succeeded
        run.finished_at = datetime.utcnow()
        run.duration_ms = summary.get("duration_ms")
        self._apply_stats(run, stats)
        run.consecutive_failures = 0
        run.last_error = f"{run.failed} properties failed to import" if run.failed else None
        run.summary_json = json.dumps(summary, ensure_ascii=False, default=str)
        await self.session.flush()
        return run

    async def fail_run(
        self,
        run: ImportJobExecution,
        err: BaseException | str,
        summary: dict[str, Any] | None = None,
    ) -> ImportJobExecution:
        summary = summary or {}
        run.status = RunStatus.failed
        run.finished_at = datetime.utcnow()
        run.duration_ms = summary.get("duration_ms")
        self._apply_stats(run, summary.get("stats") or {})
        run.last_error = str(err)
        run.consecutive_failures = (await self._previous_failures(run)) + 1
        run.summary_json = json.dumps(summary, ensure_ascii=False, default=str)
        await self.session.flush()
        return run

    async def get_run(self, run_id: int) -> ImportJobExecution | None:
        return await self.session.get(ImportJobExecution, run_id)

    async def last_run(self) -> ImportJobExecution | None:
        q = (
            select(ImportJobExecution)
            .where(ImportJobExecution.job_name == JOB_NAME)
            .order_by(ImportJobExecution.started_at.desc(), ImportJobExecution.id.desc())
            .limit(1)
        )
        return (await self.session.execute(q)).scalars().first()

    async def list_runs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        status: RunStatus | None = None,
        triggered_by: str | None = None,
    ) -> tuple[list[ImportJobExecution], int]:
        q = select(ImportJobExecution).where(ImportJobExecution.job_name == JOB_NAME)
        cq = select(func.count()).select_from(ImportJobExecution).where(ImportJobExecution.job_name == JOB_NAME)
        if status is not None:
            q = q.where(ImportJobExecution.status == status)
            cq = cq.where(ImportJobExecution.status == status)
        if triggered_by:
            q = q.where(ImportJobExecution.triggered_by == triggered_by)
            cq = cq.where(ImportJobExecution.triggered_by == triggered_by)

        q = q.order_by(ImportJobExecution.started_at.desc(), ImportJobExecution.id.desc()).limit(limit).offset(offset)
        rows = list((await self.session.execute(q)).scalars().all())
        total = int((await self.session.execute(cq)).scalar_one())
        return rows, total

    async def statistics(self, days: int = 30) -> dict[str, Any]:
        since = datetime.utcnow() - timedelta(days=days)
        q = (
            select(ImportJobExecution)
            .where(ImportJobExecution.job_name == JOB_NAME)
            .where(ImportJobExecution.started_at >= since)
        )
        rows = list((await self.session.execute(q)).scalars().all())

        by_status: dict[str, int] = {s.value: 0 for s in RunStatus}
        for r in rows:
            by_status[r.status.value] += 1

        durations = [r.duration_ms for r in rows if r.duration_ms is not None]
        finished = by_status[RunStatus.succeeded.value] + by_status[RunStatus.failed.value]

        return {
            "days": days,
            "runs": len(rows),
            "by_status": by_status,
            "success_rate": (by_status[RunStatus.succeeded.value] / finished) if finished else None,
            "avg_duration_ms": (sum(durations) / len(durations)) if durations else None,
            "properties_created": sum(r.created for r in rows),
            "duplicates": sum(r.duplicates for r in rows),
            "failed_properties": sum(r.failed for r in rows),
        }
