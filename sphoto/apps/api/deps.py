from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException, Request

from sphoto.core.config import get_settings
from sphoto.domain.models import SharedUser
from sphoto.services.shared_users import validate_portal_token


logger = logging.getLogger(__name__)


def _unauthorized(message: str = "Unauthorized") -> HTTPException:
    return HTTPException(status_code=401, detail={"code": "AUTH_UNAUTHORIZED", "message": message})


async def require_admin(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="x-api-key"),
) -> None:
    # A single shared admin secret; an unset secret locks the admin surface.
    expected = get_settings().admin_api_key
    if not expected or not x_api_key:
        raise _unauthorized()
    if not hmac.compare_digest(x_api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("admin_auth_rejected path=%s", request.url.path)
        raise _unauthorized()


def _portal_token(x_portal_token: str | None, authorization: str | None) -> str | None:
    if x_portal_token:
        return x_portal_token
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


async def require_portal_user(
    x_portal_token: str | None = Header(default=None, alias="X-Portal-Token"),
    authorization: str | None = Header(default=None),
) -> SharedUser:
    token = _portal_token(x_portal_token, authorization)
    if not token:
        raise _unauthorized("Nicht angemeldet")
    user = validate_portal_token(token)
    if user is None or user.status == "deleted":
        raise _unauthorized("Sitzung abgelaufen. Bitte erneut anmelden.")
    return user
