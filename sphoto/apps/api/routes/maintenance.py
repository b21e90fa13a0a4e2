from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.core.errors import MaintenanceNotFoundError
from sphoto.domain.models import Maintenance, MaintenanceType
from sphoto.services import maintenance


router = APIRouter(
    prefix="/api/admin/maintenance",
    tags=["maintenance"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class CreateMaintenanceRequest(BaseModel):
    title: str
    description: str = ""
    type: MaintenanceType = "update"
    scheduled_start: datetime
    scheduled_end: datetime
    affected_instances: list[str] | Literal["all"] = "all"


class UpdateMaintenanceRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    type: MaintenanceType | None = None
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    affected_instances: list[str] | Literal["all"] | None = None


@router.get("")
async def list_maintenances() -> list[Maintenance]:
    return maintenance.list_maintenances()


@router.post("", status_code=201)
async def create_maintenance(body: CreateMaintenanceRequest) -> Maintenance:
    return await maintenance.create_maintenance(
        title=body.title,
        description=body.description,
        type=body.type,
        scheduled_start=body.scheduled_start,
        scheduled_end=body.scheduled_end,
        affected_instances=body.affected_instances,
    )


@router.get("/{maintenance_id}")
async def get_maintenance(maintenance_id: str) -> Maintenance:
    item = maintenance.get_maintenance(maintenance_id)
    if item is None:
        raise MaintenanceNotFoundError(f"Maintenance not found: {maintenance_id}")
    return item


@router.put("/{maintenance_id}")
async def update_maintenance(maintenance_id: str, body: UpdateMaintenanceRequest) -> Maintenance:
    return await maintenance.update_maintenance(maintenance_id, body.model_dump(exclude_none=True))


@router.delete("/{maintenance_id}")
async def delete_maintenance(maintenance_id: str) -> Maintenance:
    # Windows are never removed; deleting cancels.
    return await maintenance.cancel_maintenance(maintenance_id)


@router.post("/{maintenance_id}/start")
async def start_maintenance(maintenance_id: str) -> Maintenance:
    return await maintenance.start_maintenance(maintenance_id)


@router.post("/{maintenance_id}/complete")
async def complete_maintenance(maintenance_id: str) -> Maintenance:
    return await maintenance.complete_maintenance(maintenance_id)


@router.post("/{maintenance_id}/cancel")
async def cancel_maintenance(maintenance_id: str) -> Maintenance:
    return await maintenance.cancel_maintenance(maintenance_id)
