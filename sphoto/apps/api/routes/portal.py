from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sphoto.apps.api.deps import require_portal_user
from sphoto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from sphoto.apps.api.response import SuccessResponse
from sphoto.domain.models import SharedUser
from sphoto.services import shared_users
from sphoto.services.billing import create_customer_portal_url


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portal", tags=["portal"], responses=DEFAULT_ERROR_RESPONSES)

MSG_LOGIN_SENT = "Falls ein Konto existiert, wurde ein Login-Link gesendet."


class LoginRequest(BaseModel):
    email: str


class AuthRequest(BaseModel):
    token: str


@router.post("/login")
async def login(body: LoginRequest) -> SuccessResponse:
    # Same answer whether or not the address has an account.
    await shared_users.send_portal_login(body.email.strip())
    return SuccessResponse(success=True, message=MSG_LOGIN_SENT)


@router.post("/auth")
async def auth(body: AuthRequest) -> dict[str, Any]:
    user = shared_users.validate_portal_token(body.token)
    if user is None or user.status == "deleted":
        raise HTTPException(
            status_code=401,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Ungültiger oder abgelaufener Login-Link"},
        )
    return {"token": body.token, "expires_at": user.portal_token_expires_at}


@router.get("/dashboard")
async def dashboard(user: SharedUser = Depends(require_portal_user)) -> dict[str, Any]:
    return await shared_users.get_portal_data(user.visible_id)


@router.post("/logout")
async def logout(user: SharedUser = Depends(require_portal_user)) -> SuccessResponse:
    await shared_users.invalidate_portal_token(user.visible_id)
    return SuccessResponse(success=True)


@router.get("/billing")
async def billing(user: SharedUser = Depends(require_portal_user)) -> dict[str, Any]:
    # Free accounts without a billing customer are pointed at the pricing page.
    if not user.stripe_customer_id:
        return {"url": None, "can_upgrade": user.tier == "free"}
    url = await create_customer_portal_url(user.stripe_customer_id)
    return {"url": url, "can_upgrade": False}


@router.post("/delete-account")
async def delete_account(user: SharedUser = Depends(require_portal_user)) -> dict[str, Any]:
    updated = await shared_users.request_account_deletion(user.visible_id)
    return {"success": True, "deletion_scheduled_for": updated.deletion_scheduled_for}


@router.post("/cancel-deletion")
async def cancel_deletion(user: SharedUser = Depends(require_portal_user)) -> SuccessResponse:
    await shared_users.cancel_account_deletion(user.visible_id)
    return SuccessResponse(success=True)
