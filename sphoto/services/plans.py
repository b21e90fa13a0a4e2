from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sphoto.core.config import Plan, plan_catalog, plan_for_name, plan_for_price
from sphoto.core.errors import BillingProviderError, InstanceNotFoundError
from sphoto.domain.models import InstanceMetadata
from sphoto.persistence.repos.instances import list_instances, load_instance, update_instance
from sphoto.providers.billing.base import subscription_period_end
from sphoto.providers.billing.factory import get_billing_gateway
from sphoto.providers.platforms.base import GIB
from sphoto.providers.platforms.factory import get_platform
from sphoto.services.email import send_downgrade_email, send_upgrade_email
from sphoto.services.usage import bytes_to_gb, directory_size_and_count, uploads_path


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DowngradeCheck:
    possible: bool
    reason: str | None
    used_gb: float
    target_plan: str | None


@dataclass(frozen=True)
class MigrationResult:
    success: bool
    message: str
    new_plan: str | None = None
    effective_at: datetime | None = None


@dataclass(frozen=True)
class PlanInfo:
    instance_id: str
    plan: str
    storage_gb: int
    used_bytes: int
    used_gb: float
    percentage: float
    can_downgrade: bool
    downgrade_block_reason: str | None
    can_upgrade: bool
    pending_plan: str | None
    plan_effective_at: datetime | None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _require_instance(instance_id: str) -> InstanceMetadata:
    record = load_instance(instance_id)
    if record is None:
        raise InstanceNotFoundError(instance_id)
    return record


def current_plan(record: InstanceMetadata) -> Plan | None:
    # Fall back to matching by quota for records whose plan name drifted.
    plan = plan_for_name(record.plan)
    if plan is not None:
        return plan
    return next((item for item in plan_catalog() if item.storage_gb == record.storage_gb), None)


def _neighbour(plan: Plan | None, step: int) -> Plan | None:
    catalog = plan_catalog()
    if plan is None:
        return catalog[0] if step > 0 else None
    index = next(i for i, item in enumerate(catalog) if item.key == plan.key) + step
    if 0 <= index < len(catalog):
        return catalog[index]
    return None


async def check_downgrade_possible(instance_id: str) -> DowngradeCheck:
    record = _require_instance(instance_id)
    lower = _neighbour(current_plan(record), -1)
    usage = await directory_size_and_count(uploads_path(instance_id))
    used_gb = bytes_to_gb(usage.bytes)
    if lower is None:
        return DowngradeCheck(possible=False, reason="Bereits im kleinsten Plan.", used_gb=used_gb, target_plan=None)
    if usage.bytes >= lower.storage_gb * GIB:
        to_free = round(usage.bytes / GIB - lower.storage_gb, 1)
        reason = (
            f"Aktuelle Nutzung: {used_gb} GB. {lower.name} Limit: {lower.storage_gb} GB. "
            f"Bitte lösche {to_free} GB."
        )
        return DowngradeCheck(possible=False, reason=reason, used_gb=used_gb, target_plan=lower.name)
    return DowngradeCheck(possible=True, reason=None, used_gb=used_gb, target_plan=lower.name)


async def get_plan_info(instance_id: str) -> PlanInfo:
    record = _require_instance(instance_id)
    usage = await directory_size_and_count(uploads_path(instance_id))
    check = await check_downgrade_possible(instance_id)
    limit = record.storage_gb * GIB
    return PlanInfo(
        instance_id=instance_id,
        plan=record.plan,
        storage_gb=record.storage_gb,
        used_bytes=usage.bytes,
        used_gb=bytes_to_gb(usage.bytes),
        percentage=round(usage.bytes / limit * 100, 1) if limit else 0.0,
        can_downgrade=check.possible,
        downgrade_block_reason=check.reason,
        can_upgrade=_neighbour(current_plan(record), 1) is not None,
        pending_plan=record.pending_plan,
        plan_effective_at=record.plan_effective_at,
    )


async def _push_quota(record: InstanceMetadata, storage_gb: int) -> bool:
    # A failed push is logged; metadata still records the plan so a retry can converge.
    pushed = await get_platform(record.platform).set_quota(record, storage_gb)
    if not pushed:
        logger.warning("plan_quota_push_failed instance_id=%s storage_gb=%s", record.id, storage_gb)
    return pushed


async def _apply_plan(record: InstanceMetadata, plan: Plan) -> InstanceMetadata | None:
    await _push_quota(record, plan.storage_gb)

    def _apply(item: InstanceMetadata) -> None:
        item.plan = plan.name
        item.storage_gb = plan.storage_gb
        item.pending_plan = None
        item.pending_storage_gb = None
        item.plan_effective_at = None

    return await update_instance(record.id, _apply)


async def upgrade_plan(instance_id: str, subscription_id: str | None = None) -> MigrationResult:
    record = _require_instance(instance_id)
    target = _neighbour(current_plan(record), 1)
    if target is None:
        return MigrationResult(success=False, message=f"Already on {record.plan} plan")

    if subscription_id:
        try:
            await get_billing_gateway().change_subscription_price(
                subscription_id, target.price_id, proration_behavior="create_prorations"
            )
        except BillingProviderError as exc:
            logger.warning("plan_upgrade_billing_failed instance_id=%s error=%s", instance_id, exc)
            return MigrationResult(success=False, message=f"Billing update failed: {exc}")

    await _apply_plan(record, target)
    await send_upgrade_email(record.email, instance_id, target.name, target.storage_gb)
    logger.info("plan_upgraded instance_id=%s plan=%s", instance_id, target.name)
    return MigrationResult(
        success=True, message="Upgrade successful", new_plan=target.name, effective_at=_utc_now()
    )


async def downgrade_plan(instance_id: str, subscription_id: str | None = None) -> MigrationResult:
    record = _require_instance(instance_id)
    check = await check_downgrade_possible(instance_id)
    if not check.possible:
        return MigrationResult(success=False, message=check.reason or "Downgrade not possible")
    target = _neighbour(current_plan(record), -1)
    if target is None:
        return MigrationResult(success=False, message="Bereits im kleinsten Plan.")

    if subscription_id:
        # Billing switches at the period boundary; the quota follows then.
        try:
            subscription = await get_billing_gateway().change_subscription_price(
                subscription_id, target.price_id, proration_behavior="none"
            )
        except BillingProviderError as exc:
            logger.warning("plan_downgrade_billing_failed instance_id=%s error=%s", instance_id, exc)
            return MigrationResult(success=False, message=f"Billing update failed: {exc}")
        period_end = subscription_period_end(subscription)
        effective_at = (
            datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else _utc_now()
        )

        def _apply(item: InstanceMetadata) -> None:
            item.pending_plan = target.name
            item.pending_storage_gb = target.storage_gb
            item.plan_effective_at = effective_at

        await update_instance(instance_id, _apply)
        await send_downgrade_email(record.email, target.name, target.storage_gb, effective_at)
        logger.info(
            "plan_downgrade_scheduled instance_id=%s plan=%s effective_at=%s",
            instance_id,
            target.name,
            effective_at.isoformat(),
        )
        return MigrationResult(
            success=True, message="Downgrade scheduled", new_plan=target.name, effective_at=effective_at
        )

    effective_at = _utc_now()
    await _apply_plan(record, target)
    await send_downgrade_email(record.email, target.name, target.storage_gb, effective_at)
    logger.info("plan_downgraded instance_id=%s plan=%s", instance_id, target.name)
    return MigrationResult(
        success=True, message="Downgrade successful", new_plan=target.name, effective_at=effective_at
    )


async def handle_plan_change(instance_id: str, price_id: str | None) -> bool:
    # Subscription updates are the source of truth for the billed plan.
    plan = plan_for_price(price_id)
    if plan is None:
        logger.warning("plan_change_unknown_price instance_id=%s price_id=%s", instance_id, price_id)
        return False
    record = load_instance(instance_id)
    if record is None:
        logger.warning("plan_change_unknown_instance instance_id=%s", instance_id)
        return False
    await _apply_plan(record, plan)
    logger.info("plan_changed instance_id=%s plan=%s", instance_id, plan.name)
    return True


async def reconcile_pending_downgrades(now: datetime | None = None) -> list[str]:
    # Apply deferred downgrades whose boundary passed without a subscription update.
    now = now or _utc_now()
    applied: list[str] = []
    for record in list_instances():
        if not record.pending_plan or record.plan_effective_at is None:
            continue
        if record.plan_effective_at > now:
            continue
        plan = plan_for_name(record.pending_plan)
        if plan is None:
            logger.warning(
                "plan_reconcile_unknown_plan instance_id=%s plan=%s", record.id, record.pending_plan
            )
            continue
        await _apply_plan(record, plan)
        applied.append(record.id)
        logger.info("plan_downgrade_applied instance_id=%s plan=%s", record.id, plan.name)
    return applied
