from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.apps.api.response import SuccessResponse
from sphoto.core.config import plan_for_key, plan_for_name
from sphoto.core.errors import InstanceNotFoundError
from sphoto.domain.models import InstanceMetadata, Platform
from sphoto.services import plans, provisioning
from sphoto.services.plans import MigrationResult, PlanInfo
from sphoto.services.subdomain import check_subdomain


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/instances",
    tags=["instances"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class CreateInstanceRequest(BaseModel):
    email: str
    plan: str = "basic"
    platform: Platform = "immich"
    subdomain: str | None = None


class CreateInstanceResponse(BaseModel):
    success: bool
    instance_id: str
    url: str
    password: str | None = None


class ApiKeyRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class PlanChangeRequest(BaseModel):
    subscription_id: str | None = None


def _require(instance_id: str) -> InstanceMetadata:
    record = provisioning.get_instance(instance_id)
    if record is None:
        raise InstanceNotFoundError(instance_id)
    return record


@router.get("")
async def list_instances() -> list[InstanceMetadata]:
    return provisioning.list_instances()


@router.post("", status_code=201)
async def create_instance(body: CreateInstanceRequest) -> CreateInstanceResponse:
    # Manual provisioning outside the checkout flow, e.g. for support cases.
    plan = plan_for_key(body.plan) or plan_for_name(body.plan)
    if plan is None:
        raise HTTPException(status_code=400, detail={"code": "BAD_REQUEST", "message": "Invalid plan"})
    if body.subdomain:
        check = check_subdomain(body.subdomain)
        if not check.available:
            raise HTTPException(status_code=400, detail={"code": "BAD_REQUEST", "message": check.error})
        instance_id = check.subdomain
    else:
        instance_id = provisioning.unique_instance_id(body.email)
    result = await provisioning.create_instance(instance_id, body.email, plan, body.platform)
    return CreateInstanceResponse(
        success=result.success,
        instance_id=instance_id,
        url=provisioning.instance_url(instance_id),
        password=result.password,
    )


@router.get("/{instance_id}")
async def get_instance(instance_id: str) -> InstanceMetadata:
    return _require(instance_id)


@router.post("/{instance_id}/start")
async def start_instance(instance_id: str) -> SuccessResponse:
    await provisioning.start_instance(instance_id)
    return SuccessResponse(success=True)


@router.post("/{instance_id}/stop")
async def stop_instance(instance_id: str) -> SuccessResponse:
    _require(instance_id)
    await provisioning.stop_instance(instance_id)
    return SuccessResponse(success=True)


@router.delete("/{instance_id}")
async def delete_instance(instance_id: str) -> SuccessResponse:
    _require(instance_id)
    await provisioning.delete_instance(instance_id)
    return SuccessResponse(success=True)


@router.post("/{instance_id}/generate-api-key")
async def generate_api_key(instance_id: str, body: ApiKeyRequest) -> SuccessResponse:
    record = _require(instance_id)
    if record.api_key:
        return SuccessResponse(success=True, message="API key already exists")
    if not body.email or not body.password:
        raise HTTPException(
            status_code=400,
            detail={"code": "BAD_REQUEST", "message": "Email and password required"},
        )
    result = await provisioning.generate_api_key(instance_id, body.email, body.password)
    return SuccessResponse(success=result.success, message=result.message)


@router.get("/{instance_id}/stats")
async def instance_stats(instance_id: str) -> dict:
    return await provisioning.get_instance_stats(instance_id)


@router.get("/{instance_id}/plan")
async def plan_info(instance_id: str) -> PlanInfo:
    return await plans.get_plan_info(instance_id)


@router.post("/{instance_id}/plan/upgrade")
async def plan_upgrade(instance_id: str, body: PlanChangeRequest | None = None) -> MigrationResult:
    # Business blocks come back as success=false with a message, not as errors.
    record = _require(instance_id)
    subscription_id = (body.subscription_id if body else None) or record.stripe_subscription_id
    return await plans.upgrade_plan(instance_id, subscription_id)


@router.post("/{instance_id}/plan/downgrade")
async def plan_downgrade(instance_id: str, body: PlanChangeRequest | None = None) -> MigrationResult:
    record = _require(instance_id)
    subscription_id = (body.subscription_id if body else None) or record.stripe_subscription_id
    return await plans.downgrade_plan(instance_id, subscription_id)
