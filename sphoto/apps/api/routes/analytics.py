from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.apps.api.response import SuccessResponse
from sphoto.services.analytics import (
    MAX_ANALYTICS_DAYS,
    AnalyticsReport,
    get_analytics,
    store_daily_stats,
)


router = APIRouter(
    prefix="/api/analytics",
    tags=["analytics"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


@router.get("")
async def analytics(days: int = Query(default=30, ge=1)) -> AnalyticsReport:
    return get_analytics(min(days, MAX_ANALYTICS_DAYS))


@router.post("/collect")
async def collect() -> SuccessResponse:
    # Manual trigger; failures propagate instead of being logged away.
    await store_daily_stats()
    return SuccessResponse(success=True)
