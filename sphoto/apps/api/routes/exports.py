from __future__ import annotations

from fastapi import APIRouter, Depends

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.apps.api.response import SuccessResponse
from sphoto.core.errors import ExportNotFoundError
from sphoto.domain.models import ExportJob
from sphoto.services import export


router = APIRouter(
    prefix="/api/instances",
    tags=["exports"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


@router.post("/{instance_id}/export", status_code=202)
async def start_export(instance_id: str) -> ExportJob:
    return await export.start_export(instance_id)


@router.get("/{instance_id}/export/{job_id}")
async def get_export(instance_id: str, job_id: str) -> ExportJob:
    job = export.get_export_job(job_id)
    if job is None or job.instance_id != instance_id:
        raise ExportNotFoundError("Export job not found")
    return job


@router.get("/{instance_id}/exports")
async def list_exports(instance_id: str) -> list[ExportJob]:
    return export.list_export_jobs(instance_id)


@router.post("/{instance_id}/export/{job_id}/notify")
async def notify_export(instance_id: str, job_id: str) -> SuccessResponse:
    sent = await export.notify_export_ready(instance_id, job_id)
    return SuccessResponse(success=sent, message=None if sent else "Email could not be sent")
