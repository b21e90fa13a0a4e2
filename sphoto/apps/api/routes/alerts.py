from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.apps.api.response import SuccessResponse
from sphoto.domain.models import AlertHistory
from sphoto.services import alerts
from sphoto.services.alerts import ActiveAlert, AlertSummary


router = APIRouter(
    prefix="/api/admin/alerts",
    tags=["alerts"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class AlertSettingsPatch(BaseModel):
    email_alerts: bool | None = None
    storage_thresholds: list[int] | None = None
    inactivity_days: int | None = None
    churn_risk_days: int | None = None


class AlertCheckResult(BaseModel):
    success: bool
    alerts: list[AlertSummary]


@router.get("")
async def active_alerts() -> list[ActiveAlert]:
    return alerts.get_active_alerts()


@router.post("/check")
async def run_check() -> AlertCheckResult:
    summaries = await alerts.run_alert_check()
    return AlertCheckResult(success=True, alerts=summaries)


@router.get("/{instance_id}")
async def alert_history(instance_id: str) -> AlertHistory:
    return alerts.get_alert_history(instance_id)


@router.put("/{instance_id}/settings")
async def alert_settings(instance_id: str, body: AlertSettingsPatch) -> AlertHistory:
    return await alerts.update_alert_settings(instance_id, body.model_dump(exclude_none=True))


@router.post("/{instance_id}/test")
async def test_alert(instance_id: str, type: str = Query(default="storage_80")) -> SuccessResponse:
    sent = await alerts.send_test_alert(instance_id, type)
    return SuccessResponse(success=sent, message=f"Test alert '{type}' sent" if sent else "Email could not be sent")
