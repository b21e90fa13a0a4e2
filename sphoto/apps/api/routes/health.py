from __future__ import annotations

from fastapi import APIRouter, Depends

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.core.errors import InstanceNotFoundError
from sphoto.domain.models import HealthStatus
from sphoto.services import health
from sphoto.services.health import HealthSummary


router = APIRouter(
    prefix="/api/admin/health",
    tags=["health"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


@router.get("")
async def health_summary() -> HealthSummary:
    return health.get_health_summary()


@router.post("/check")
async def run_check() -> HealthSummary:
    return await health.run_health_check()


@router.get("/{instance_id}")
async def instance_health(instance_id: str) -> HealthStatus:
    # Only instances seen by a sweep have a stored status.
    status = health.get_instance_health(instance_id)
    if status is None:
        raise InstanceNotFoundError(instance_id)
    return status
