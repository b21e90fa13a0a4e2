from __future__ import annotations

from fastapi import APIRouter, Depends

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.apps.api.response import SuccessResponse
from sphoto.domain.models import Branding
from sphoto.services.branding import delete_branding, get_branding, update_branding


router = APIRouter(
    prefix="/api/instances",
    tags=["branding"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


@router.get("/{instance_id}/branding")
async def read_branding(instance_id: str) -> dict:
    # An instance without branding answers with an empty object.
    branding = get_branding(instance_id)
    return branding.model_dump(exclude_none=True) if branding else {}


@router.put("/{instance_id}/branding")
async def write_branding(instance_id: str, body: Branding) -> Branding:
    return await update_branding(instance_id, body)


@router.delete("/{instance_id}/branding")
async def remove_branding(instance_id: str) -> SuccessResponse:
    await delete_branding(instance_id)
    return SuccessResponse(success=True)
