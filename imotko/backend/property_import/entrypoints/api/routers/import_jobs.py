# property_import/entrypoints/api/routers/import_jobs.py
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_guard, require_api_key
from ....adapters.repos.import_runs import ImportRunRepository
from ....db import get_session
from ....errors import ImportAlreadyRunningError
from ....jobs.scheduler import ScheduleGuard
from ....models import ImportJobExecution, RunStatus, TriggerSource
from ....schemas import (
    ImportExecutionOut,
    ImportHistoryOut,
    ImportStatisticsOut,
    RunSummaryOut,
)

router = APIRouter(
    prefix="/admin/import-jobs",
    tags=["import-jobs"],
    dependencies=[Depends(require_api_key)],
)


def _execution_out(run: ImportJobExecution) -> ImportExecutionOut:
    errors: list[dict[str, Any]] = []
    if run.errors_json:
        try:
            errors = json.loads(run.errors_json)
        except json.JSONDecodeError:
            errors = []

    return ImportExecutionOut(
        id=run.id,
        job_name=run.job_name,
        triggered_by=run.triggered_by,
        status=run.status.value,
        started_at=run.started_at,
        finished_at=run.finished_at,
        duration_ms=run.duration_ms,
        total=run.total,
        processed=run.processed,
        created=run.created,
        duplicates=run.duplicates,
        failed=run.failed,
        consecutive_failures=run.consecutive_failures,
        last_error=run.last_error,
        errors=errors,
    )


@router.get("/status")
async def import_status(
    guard: ScheduleGuard = Depends(get_guard),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    last = await ImportRunRepository(session).last_run()
    return {
        "scheduler": guard.get_status(),
        "last_run": _execution_out(last).model_dump(mode="json") if last else None,
    }


@router.post("/trigger", response_model=RunSummaryOut)
async def trigger_import(
    guard: ScheduleGuard = Depends(get_guard),
) -> RunSummaryOut:
    try:
        summary = await guard.trigger_manually(TriggerSource.api.value)
    except ImportAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Import failed: {e}")

    return RunSummaryOut.model_validate(summary.as_dict())


@router.get("/history", response_model=ImportHistoryOut)
async def import_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    status: RunStatus | None = Query(None),
    triggered_by: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
) -> ImportHistoryOut:
    rows, total = await ImportRunRepository(session).list_runs(
        limit=limit,
        offset=offset,
        status=status,
        triggered_by=triggered_by,
    )
    return ImportHistoryOut(items=[_execution_out(r) for r in rows], total=total, limit=limit, offset=offset)


@router.get("/last", response_model=ImportExecutionOut)
async def last_import(session: AsyncSession = Depends(get_session)) -> ImportExecutionOut:
    run = await ImportRunRepository(session).last_run()
    if run is None:
        raise HTTPException(status_code=404, detail="No import executions found")
    return _execution_out(run)


@router.get("/statistics", response_model=ImportStatisticsOut)
async def import_statistics(
    days: int = Query(30, ge=1, le=365),
    session: AsyncSession = Depends(get_session),
) -> ImportStatisticsOut:
    stats = await ImportRunRepository(session).statistics(days)
    return ImportStatisticsOut(**stats)


@router.get("/{execution_id}", response_model=ImportExecutionOut)
async def get_import(execution_id: int, session: AsyncSession = Depends(get_session)) -> ImportExecutionOut:
    run = await ImportRunRepository(session).get_run(execution_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Import execution not found")
    return _execution_out(run)
