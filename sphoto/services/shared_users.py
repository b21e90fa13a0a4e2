"""Accounts on the two pooled containers used by the shared deployment mode.

Free-tier users live on the free container, basic and pro users on the paid
one. Crossing that boundary recreates the account on the other container and
force-deletes it on the old one, which drops the user's library.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from sphoto.core.config import get_settings
from sphoto.core.errors import SharedUserNotFoundError, TenantAppError, ValidationFailedError
from sphoto.domain.models import SharedInstanceKey, SharedTier, SharedUser
from sphoto.persistence.repos.shared_users import (
    list_shared_users as _list_shared_users,
    load_shared_user,
    save_shared_user,
    update_shared_user,
)
from sphoto.providers.http import tenant_http_client
from sphoto.providers.platforms.base import GIB
from sphoto.services.email import (
    send_account_deleted_email,
    send_deletion_scheduled_email,
    send_portal_login_email,
)
from sphoto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_ALPHANUMERIC = string.ascii_letters + string.digits
_BASE36 = string.ascii_lowercase + string.digits
_PLAN_NAMES = {"free": "Free", "basic": "Basic", "pro": "Pro"}


@dataclass(frozen=True)
class SharedInstanceConfig:
    key: SharedInstanceKey
    url: str
    internal_url: str
    api_key: str
    has_ml: bool


@dataclass(frozen=True)
class CreatedSharedUser:
    user: SharedUser
    password: str


@dataclass(frozen=True)
class MigrationOutcome:
    user: SharedUser
    migrated: bool
    password: str | None
    old_instance: SharedInstanceKey
    new_instance: SharedInstanceKey


@dataclass(frozen=True)
class SharedUserStats:
    quota_gb: int
    used_bytes: int
    used_gb: float
    percent_used: int
    photos: int
    videos: int


@dataclass(frozen=True)
class DeletionSweep:
    processed: int
    deleted: list[str]
    errors: list[str]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def shared_instance_config(key: SharedInstanceKey) -> SharedInstanceConfig:
    settings = get_settings()
    if key == "free":
        return SharedInstanceConfig(
            key="free",
            url=settings.shared_free_url,
            internal_url=settings.shared_free_internal_url,
            api_key=settings.shared_free_api_key,
            has_ml=settings.shared_free_has_ml,
        )
    return SharedInstanceConfig(
        key="paid",
        url=settings.shared_paid_url,
        internal_url=settings.shared_paid_internal_url,
        api_key=settings.shared_paid_api_key,
        has_ml=settings.shared_paid_has_ml,
    )


def tier_to_instance(tier: SharedTier) -> SharedInstanceKey:
    return "free" if tier == "free" else "paid"


def tier_quota_gb(tier: SharedTier, plan_storage_gb: int | None = None) -> int:
    settings = get_settings()
    if tier == "free":
        return settings.free_tier_quota_gb
    return plan_storage_gb or settings.shared_paid_default_quota_gb


def _visible_id(email: str) -> str:
    base = re.sub(r"[^a-z0-9]", "", email.split("@")[0].lower())[:10] or "user"
    return f"{base}-{''.join(secrets.choice(_BASE36) for _ in range(4))}"


def _password() -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(12))


async def _admin_call(
    instance: SharedInstanceKey,
    method: str,
    path: str,
    *,
    json: dict[str, Any] | None = None,
    timeout_s: float | None = None,
) -> Any:
    # Admin API of a pooled container, authenticated with its API key.
    config = shared_instance_config(instance)
    timeout = timeout_s or get_settings().http_timeout_s
    start = time.monotonic()
    try:
        async with tenant_http_client(timeout) as client:
            response = await client.request(
                method,
                f"{config.internal_url}{path}",
                json=json,
                headers={"x-api-key": config.api_key},
            )
    except httpx.HTTPError as exc:
        record_external_call(
            integration="shared_instance", latency_ms=(time.monotonic() - start) * 1000.0, success=False
        )
        raise TenantAppError(f"{instance} instance unreachable: {exc}") from exc
    record_external_call(
        integration="shared_instance",
        latency_ms=(time.monotonic() - start) * 1000.0,
        success=response.is_success,
    )
    if not response.is_success:
        raise TenantAppError(f"{instance} instance returned HTTP {response.status_code}: {response.text[:200]}")
    if not response.content:
        return None
    return response.json()


def _require_user(visible_id: str) -> SharedUser:
    user = load_shared_user(visible_id)
    if user is None:
        raise SharedUserNotFoundError(f"Shared user not found: {visible_id}")
    return user


async def _create_app_user(instance: SharedInstanceKey, email: str, password: str, quota_gb: int) -> str:
    payload = {
        "email": email,
        "password": password,
        "name": email.split("@")[0],
        "quotaSizeInBytes": quota_gb * GIB,
        "shouldChangePassword": True,
    }
    created = await _admin_call(instance, "POST", "/api/admin/users", json=payload)
    if not created or not created.get("id"):
        raise TenantAppError(f"{instance} instance returned no user id")
    return created["id"]


async def create_shared_user(email: str, tier: SharedTier, quota_gb: int | None = None) -> CreatedSharedUser:
    instance = tier_to_instance(tier)
    quota = tier_quota_gb(tier, quota_gb)
    password = _password()
    logger.info("shared_user_create instance=%s tier=%s quota_gb=%s", instance, tier, quota)
    app_user_id = await _create_app_user(instance, email, password, quota)
    user = SharedUser(
        id=str(uuid.uuid4()),
        visible_id=_visible_id(email),
        email=email,
        app_user_id=app_user_id,
        tier=tier,
        instance=instance,
        quota_gb=quota,
        created=_utc_now(),
    )
    save_shared_user(user)
    return CreatedSharedUser(user=user, password=password)


def get_shared_user(visible_id: str) -> SharedUser | None:
    return load_shared_user(visible_id)


def list_shared_users() -> list[SharedUser]:
    return _list_shared_users()


def get_shared_user_by_email(email: str) -> SharedUser | None:
    email = email.lower()
    return next((user for user in _list_shared_users() if user.email.lower() == email), None)


def get_shared_user_by_app_id(app_user_id: str) -> SharedUser | None:
    return next((user for user in _list_shared_users() if user.app_user_id == app_user_id), None)


def get_shared_user_by_stripe_customer(customer_id: str) -> SharedUser | None:
    return next(
        (user for user in _list_shared_users() if user.stripe_customer_id == customer_id), None
    )


async def update_shared_user_quota(visible_id: str, quota_gb: int) -> SharedUser:
    user = _require_user(visible_id)
    await _admin_call(
        user.instance,
        "PUT",
        f"/api/admin/users/{user.app_user_id}",
        json={"quotaSizeInBytes": quota_gb * GIB},
    )

    def _apply(item: SharedUser) -> None:
        item.quota_gb = quota_gb

    return await update_shared_user(visible_id, _apply) or user


async def update_shared_user_tier(
    visible_id: str, tier: SharedTier, quota_gb: int | None = None
) -> SharedUser:
    # Same-container tier change only; crossing free/paid goes through migration.
    user = _require_user(visible_id)
    if tier_to_instance(tier) != user.instance:
        raise ValidationFailedError("Tier change requires migration to the other instance")
    quota = tier_quota_gb(tier, quota_gb)
    await update_shared_user_quota(visible_id, quota)

    def _apply(item: SharedUser) -> None:
        item.tier = tier

    return await update_shared_user(visible_id, _apply) or user


async def delete_shared_user(visible_id: str, force: bool = False) -> SharedUser:
    user = _require_user(visible_id)
    await _admin_call(
        user.instance, "DELETE", f"/api/admin/users/{user.app_user_id}", json={"force": force}
    )

    def _apply(item: SharedUser) -> None:
        item.status = "deleted"
        item.portal_token = None
        item.portal_token_expires_at = None

    logger.info("shared_user_deleted visible_id=%s force=%s", visible_id, force)
    return await update_shared_user(visible_id, _apply) or user


async def migrate_user_between_instances(
    visible_id: str, tier: SharedTier, quota_gb: int | None = None
) -> MigrationOutcome:
    user = _require_user(visible_id)
    new_instance = tier_to_instance(tier)
    old_instance = user.instance
    if new_instance == old_instance:
        updated = await update_shared_user_tier(visible_id, tier, quota_gb)
        return MigrationOutcome(
            user=updated,
            migrated=False,
            password=None,
            old_instance=old_instance,
            new_instance=new_instance,
        )

    quota = tier_quota_gb(tier, quota_gb)
    password = _password()
    logger.info("shared_user_migrate visible_id=%s from=%s to=%s", visible_id, old_instance, new_instance)
    new_app_id = await _create_app_user(new_instance, user.email, password, quota)
    try:
        await _admin_call(
            old_instance, "DELETE", f"/api/admin/users/{user.app_user_id}", json={"force": True}
        )
    except TenantAppError as exc:
        # The account already exists on the new container; keep going.
        logger.warning("shared_user_migrate_cleanup_failed visible_id=%s error=%s", visible_id, exc)

    def _apply(item: SharedUser) -> None:
        item.app_user_id = new_app_id
        item.instance = new_instance
        item.tier = tier
        item.quota_gb = quota

    updated = await update_shared_user(visible_id, _apply) or user
    return MigrationOutcome(
        user=updated,
        migrated=True,
        password=password,
        old_instance=old_instance,
        new_instance=new_instance,
    )


async def get_shared_user_stats(visible_id: str) -> SharedUserStats:
    user = _require_user(visible_id)
    data = await _admin_call(user.instance, "GET", f"/api/admin/users/{user.app_user_id}/statistics")
    data = data or {}
    used = int(data.get("usage", 0))
    quota_bytes = user.quota_gb * GIB
    return SharedUserStats(
        quota_gb=user.quota_gb,
        used_bytes=used,
        used_gb=round(used / GIB, 2),
        percent_used=round(used / quota_bytes * 100) if quota_bytes else 0,
        photos=int(data.get("images", 0)),
        videos=int(data.get("videos", 0)),
    )


async def update_shared_user_stripe(
    visible_id: str, customer_id: str | None, subscription_id: str | None
) -> SharedUser:
    user = _require_user(visible_id)

    def _apply(item: SharedUser) -> None:
        if customer_id:
            item.stripe_customer_id = customer_id
        if subscription_id:
            item.stripe_subscription_id = subscription_id

    return await update_shared_user(visible_id, _apply) or user


async def check_shared_instance_health(instance: SharedInstanceKey) -> dict[str, Any]:
    start = time.monotonic()
    try:
        await _admin_call(instance, "GET", "/api/server/ping", timeout_s=get_settings().liveness_timeout_s)
    except TenantAppError as exc:
        return {"instance": instance, "healthy": False, "error": str(exc)}
    return {
        "instance": instance,
        "healthy": True,
        "response_time_ms": round((time.monotonic() - start) * 1000.0, 1),
    }


async def get_shared_instance_stats(instance: SharedInstanceKey) -> dict[str, Any]:
    data = await _admin_call(instance, "GET", "/api/server/statistics") or {}
    usage = int(data.get("usage", 0))
    return {
        "instance": instance,
        "photos": int(data.get("photos", 0)),
        "videos": int(data.get("videos", 0)),
        "usage_bytes": usage,
        "usage_gb": round(usage / GIB, 2),
        "users": len(data.get("usageByUser") or []),
    }


async def request_account_deletion(visible_id: str) -> SharedUser:
    # Repeated requests keep the original schedule.
    user = _require_user(visible_id)
    if user.status == "pending_deletion":
        return user
    if user.status == "deleted":
        raise ValidationFailedError("Account already deleted")
    now = _utc_now()
    scheduled = now + timedelta(days=get_settings().deletion_grace_days)

    def _apply(item: SharedUser) -> None:
        item.status = "pending_deletion"
        item.deletion_requested_at = now
        item.deletion_scheduled_for = scheduled

    updated = await update_shared_user(visible_id, _apply) or user
    await send_deletion_scheduled_email(user.email, scheduled)
    logger.info("shared_user_deletion_scheduled visible_id=%s at=%s", visible_id, scheduled.isoformat())
    return updated


async def cancel_account_deletion(visible_id: str) -> SharedUser:
    user = _require_user(visible_id)
    if user.status != "pending_deletion":
        raise ValidationFailedError("Account is not pending deletion")

    def _apply(item: SharedUser) -> None:
        item.status = "active"
        item.deletion_requested_at = None
        item.deletion_scheduled_for = None

    return await update_shared_user(visible_id, _apply) or user


def list_pending_deletions() -> list[SharedUser]:
    return [user for user in _list_shared_users() if user.status == "pending_deletion"]


async def process_scheduled_deletions(now: datetime | None = None) -> DeletionSweep:
    now = now or _utc_now()
    deleted: list[str] = []
    errors: list[str] = []
    for user in list_pending_deletions():
        if user.deletion_scheduled_for is None or user.deletion_scheduled_for > now:
            continue
        try:
            await delete_shared_user(user.visible_id, force=True)
        except TenantAppError as exc:
            errors.append(f"{user.email}: {exc}")
            logger.warning("shared_user_deletion_failed visible_id=%s error=%s", user.visible_id, exc)
            continue
        deleted.append(user.email)
        await send_account_deleted_email(user.email)
    return DeletionSweep(processed=len(deleted) + len(errors), deleted=deleted, errors=errors)


async def create_portal_session(visible_id: str) -> SharedUser:
    user = _require_user(visible_id)
    if user.status == "deleted":
        raise ValidationFailedError("Account is deleted")
    token = uuid.uuid4().hex + uuid.uuid4().hex
    expires = _utc_now() + timedelta(hours=get_settings().portal_token_ttl_hours)

    def _apply(item: SharedUser) -> None:
        item.portal_token = token
        item.portal_token_expires_at = expires

    return await update_shared_user(visible_id, _apply) or user


def validate_portal_token(token: str) -> SharedUser | None:
    if not token:
        return None
    now = _utc_now()
    for user in _list_shared_users():
        if user.portal_token and secrets.compare_digest(user.portal_token, token):
            if user.portal_token_expires_at and user.portal_token_expires_at < now:
                return None
            return user
    return None


async def invalidate_portal_token(visible_id: str) -> bool:
    def _apply(item: SharedUser) -> None:
        item.portal_token = None
        item.portal_token_expires_at = None

    return await update_shared_user(visible_id, _apply) is not None


def portal_login_url(token: str) -> str:
    return f"https://{get_settings().domain}/portal?token={token}"


async def send_portal_login(email: str) -> bool:
    # Unknown or deleted addresses are ignored so callers cannot discover accounts.
    user = get_shared_user_by_email(email)
    if user is None or user.status == "deleted":
        logger.info("portal_login_ignored")
        return False
    session = await create_portal_session(user.visible_id)
    if not session.portal_token:
        return False
    return await send_portal_login_email(user.email, portal_login_url(session.portal_token))


async def get_portal_data(visible_id: str) -> dict[str, Any]:
    user = _require_user(visible_id)
    config = shared_instance_config(user.instance)
    try:
        stats: SharedUserStats | None = await get_shared_user_stats(visible_id)
    except TenantAppError as exc:
        logger.warning("portal_stats_unavailable visible_id=%s error=%s", visible_id, exc)
        stats = None
    cooldown = timedelta(days=get_settings().export_cooldown_days)
    can_export = user.last_export_at is None or _utc_now() - user.last_export_at > cooldown
    return {
        "email": user.email,
        "tier": user.tier,
        "plan": _PLAN_NAMES.get(user.tier, user.tier),
        "quota_gb": user.quota_gb,
        "used_gb": stats.used_gb if stats else 0,
        "percent_used": stats.percent_used if stats else 0,
        "photos": stats.photos if stats else 0,
        "videos": stats.videos if stats else 0,
        "instance": user.instance,
        "instance_url": config.url,
        "has_ml": config.has_ml,
        "status": user.status,
        "created": user.created,
        "is_pending_deletion": user.status == "pending_deletion",
        "deletion_scheduled_for": user.deletion_scheduled_for,
        "can_request_export": can_export,
        "last_export_at": user.last_export_at,
    }
