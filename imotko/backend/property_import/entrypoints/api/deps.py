# property_import/entrypoints/api/deps.py
from __future__ import annotations

from fastapi import Header, HTTPException, Request

from ...config import settings
from ...jobs.scheduler import ScheduleGuard


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")


def get_guard(request: Request) -> ScheduleGuard:
    guard = getattr(request.app.state, "guard", None)
    if guard is None:
        raise HTTPException(status_code=503, detail="Import scheduler is not initialized")
    return guard
