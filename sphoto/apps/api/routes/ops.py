from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.services.telemetry import availability, counters_snapshot, external_calls_by_integration


router = APIRouter(
    prefix="/api/admin/ops",
    tags=["ops"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


@router.get("/metrics")
async def ops_metrics(window_s: int = Query(default=3600, ge=60, le=86400)) -> dict[str, Any]:
    # JSON metrics for dashboards; samples are in-process and reset on restart.
    return {
        "window_s": window_s,
        "availability": availability(window_s),
        "counters": counters_snapshot(),
        "external_calls": external_calls_by_integration(window_s),
    }
