from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from sphoto.apps.api.deps import require_admin
from sphoto.apps.api.openapi import ADMIN_ERROR_RESPONSES
from sphoto.core.errors import SharedUserNotFoundError
from sphoto.domain.models import SharedInstanceKey, SharedTier, SharedUser
from sphoto.services import shared_users
from sphoto.services.shared_users import SharedUserStats


router = APIRouter(
    prefix="/api/admin",
    tags=["shared-users"],
    responses=ADMIN_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class CreateSharedUserRequest(BaseModel):
    email: str
    tier: SharedTier = "free"
    quota_gb: int | None = Field(default=None, ge=1)


class CreateSharedUserResponse(BaseModel):
    user: SharedUser
    password: str


class TierChangeRequest(BaseModel):
    tier: SharedTier
    quota_gb: int | None = Field(default=None, ge=1)


class TierChangeResponse(BaseModel):
    user: SharedUser
    migrated: bool
    password: str | None = None
    old_instance: SharedInstanceKey
    new_instance: SharedInstanceKey


class QuotaRequest(BaseModel):
    quota_gb: int = Field(ge=1)


def _require(visible_id: str) -> SharedUser:
    user = shared_users.get_shared_user(visible_id)
    if user is None:
        raise SharedUserNotFoundError(f"Shared user not found: {visible_id}")
    return user


@router.get("/shared-users")
async def list_users() -> list[SharedUser]:
    return shared_users.list_shared_users()


@router.post("/shared-users", status_code=201)
async def create_user(body: CreateSharedUserRequest) -> CreateSharedUserResponse:
    created = await shared_users.create_shared_user(body.email, body.tier, body.quota_gb)
    return CreateSharedUserResponse(user=created.user, password=created.password)


@router.get("/shared-users/{visible_id}")
async def get_user(visible_id: str) -> SharedUser:
    return _require(visible_id)


@router.delete("/shared-users/{visible_id}")
async def delete_user(visible_id: str, force: bool = Query(default=False)) -> SharedUser:
    return await shared_users.delete_shared_user(visible_id, force=force)


@router.put("/shared-users/{visible_id}/tier")
async def change_tier(visible_id: str, body: TierChangeRequest) -> TierChangeResponse:
    # Crossing free/paid recreates the account on the other container.
    outcome = await shared_users.migrate_user_between_instances(visible_id, body.tier, body.quota_gb)
    return TierChangeResponse(
        user=outcome.user,
        migrated=outcome.migrated,
        password=outcome.password,
        old_instance=outcome.old_instance,
        new_instance=outcome.new_instance,
    )


@router.put("/shared-users/{visible_id}/quota")
async def change_quota(visible_id: str, body: QuotaRequest) -> SharedUser:
    return await shared_users.update_shared_user_quota(visible_id, body.quota_gb)


@router.post("/shared-users/{visible_id}/deletion")
async def schedule_deletion(visible_id: str) -> SharedUser:
    return await shared_users.request_account_deletion(visible_id)


@router.delete("/shared-users/{visible_id}/deletion")
async def cancel_deletion(visible_id: str) -> SharedUser:
    return await shared_users.cancel_account_deletion(visible_id)


@router.post("/shared-users/{visible_id}/portal-session")
async def portal_session(visible_id: str) -> dict[str, Any]:
    user = await shared_users.create_portal_session(visible_id)
    return {
        "token": user.portal_token,
        "expires_at": user.portal_token_expires_at,
        "login_url": shared_users.portal_login_url(user.portal_token or ""),
    }


@router.get("/shared-users/{visible_id}/stats")
async def user_stats(visible_id: str) -> SharedUserStats:
    return await shared_users.get_shared_user_stats(visible_id)


@router.get("/shared-instances/{instance}/health")
async def shared_instance_health(instance: SharedInstanceKey) -> dict[str, Any]:
    return await shared_users.check_shared_instance_health(instance)


@router.get("/shared-instances/{instance}/stats")
async def shared_instance_stats(instance: SharedInstanceKey) -> dict[str, Any]:
    return await shared_users.get_shared_instance_stats(instance)
