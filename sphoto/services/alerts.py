from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from pydantic import ValidationError

from sphoto.core.config import get_settings
from sphoto.core.errors import InstanceNotFoundError, ValidationFailedError
from sphoto.domain.models import AlertHistory, AlertRecord, AlertSettings, AlertType
from sphoto.persistence.repos.alerts import load_alert_history, update_alert_history
from sphoto.persistence.repos.instances import list_instances, load_instance
from sphoto.providers.platforms.base import instance_url
from sphoto.providers.platforms.factory import get_platform
from sphoto.services.analytics import last_activity_date
from sphoto.services.email import (
    send_churn_risk_email,
    send_inactivity_email,
    send_instance_down_email,
    send_storage_alert_email,
    send_test_alert_email,
)
from sphoto.services.telemetry import increment_counter
from sphoto.services.usage import bytes_to_gb, get_storage_usage


logger = logging.getLogger(__name__)

ACTIVE_ALERT_WINDOW = timedelta(days=7)
ALERT_TYPES: tuple[str, ...] = (
    "storage_80",
    "storage_90",
    "storage_100",
    "inactive",
    "churn_risk",
    "instance_down",
    "ssl_expiry",
)

Recipient = Literal["customer", "admin", "both"]


@dataclass(frozen=True)
class AlertSummary:
    instance_id: str
    type: AlertType
    triggered_at: datetime
    recipient: Recipient
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActiveAlert:
    instance_id: str
    type: AlertType
    sent_at: datetime
    message: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def last_sent(history: AlertHistory, alert_type: str) -> datetime | None:
    sent = [record.sent_at for record in history.alerts if record.type == alert_type]
    return max(sent) if sent else None


def is_on_cooldown(history: AlertHistory, alert_type: str, now: datetime | None = None) -> bool:
    sent_at = last_sent(history, alert_type)
    if sent_at is None:
        return False
    now = now or _utc_now()
    return now - sent_at < timedelta(hours=get_settings().alert_cooldown_hours)


async def record_alert(instance_id: str, alert_type: AlertType, message: str, now: datetime | None = None) -> None:
    sent_at = now or _utc_now()

    def _append(history: AlertHistory) -> None:
        history.alerts.append(AlertRecord(type=alert_type, sent_at=sent_at, message=message))

    await update_alert_history(instance_id, _append)
    increment_counter(f"alert.{alert_type}")


def _storage_band(percentage: int, thresholds: list[int]) -> AlertType | None:
    # Only the highest crossed band fires.
    for threshold, alert_type in ((100, "storage_100"), (90, "storage_90"), (80, "storage_80")):
        if threshold in thresholds and percentage >= threshold:
            return alert_type
    return None


async def _check_storage(
    instance_id: str, email: str, history: AlertHistory, now: datetime
) -> AlertSummary | None:
    usage = await get_storage_usage(instance_id)
    if usage is None:
        return None
    alert_type = _storage_band(usage.percentage, history.settings.storage_thresholds)
    if alert_type is None or is_on_cooldown(history, alert_type, now):
        return None
    used_gb = bytes_to_gb(usage.used_bytes)
    limit_gb = round(usage.limit_bytes / (1024**3))
    recipients = [email]
    recipient: Recipient = "customer"
    admin_email = get_settings().admin_email
    if alert_type == "storage_100" and admin_email:
        recipients.append(admin_email)
        recipient = "both"
    await send_storage_alert_email(recipients, instance_id, usage.percentage, used_gb, limit_gb)
    await record_alert(instance_id, alert_type, f"Storage at {usage.percentage}%", now)
    return AlertSummary(
        instance_id=instance_id,
        type=alert_type,
        triggered_at=now,
        recipient=recipient,
        details={"percentage": usage.percentage, "used_gb": used_gb, "limit_gb": limit_gb},
    )


async def _check_liveness(
    instance_id: str, platform: str, history: AlertHistory, now: datetime
) -> AlertSummary | None:
    if is_on_cooldown(history, "instance_down", now):
        return None
    result = await get_platform(platform).check_liveness(
        instance_url(instance_id), get_settings().http_timeout_s
    )
    if result.healthy:
        return None
    await send_instance_down_email(instance_id, result.error)
    await record_alert(instance_id, "instance_down", result.error or "Health check failed", now)
    return AlertSummary(
        instance_id=instance_id,
        type="instance_down",
        triggered_at=now,
        recipient="admin",
        details={"status_code": result.status_code, "error": result.error},
    )


async def _check_inactivity(
    instance_id: str, email: str, history: AlertHistory, now: datetime
) -> AlertSummary | None:
    last_activity = last_activity_date(instance_id)
    if last_activity is None:
        return None
    days = (now.date() - last_activity).days
    settings = history.settings
    if days >= settings.churn_risk_days:
        if is_on_cooldown(history, "churn_risk", now):
            return None
        await send_churn_risk_email(instance_id, email, days)
        await record_alert(instance_id, "churn_risk", f"No uploads for {days} days", now)
        return AlertSummary(
            instance_id=instance_id,
            type="churn_risk",
            triggered_at=now,
            recipient="admin",
            details={"days_inactive": days},
        )
    if days >= settings.inactivity_days:
        if is_on_cooldown(history, "inactive", now):
            return None
        await send_inactivity_email(email, instance_id, days)
        await record_alert(instance_id, "inactive", f"No uploads for {days} days", now)
        return AlertSummary(
            instance_id=instance_id,
            type="inactive",
            triggered_at=now,
            recipient="customer",
            details={"days_inactive": days},
        )
    return None


async def check_instance_alerts(instance_id: str, now: datetime | None = None) -> list[AlertSummary]:
    """Evaluate storage, liveness and inactivity alerts for one instance.

    Each alert type fires at most once per cooldown window; instances with
    email alerts disabled are skipped entirely.
    """
    record = load_instance(instance_id)
    if record is None:
        return []
    now = now or _utc_now()
    history = load_alert_history(instance_id)
    if not history.settings.email_alerts:
        return []

    summaries: list[AlertSummary] = []
    storage = await _check_storage(instance_id, record.email, history, now)
    if storage is not None:
        summaries.append(storage)
    if record.status == "active":
        down = await _check_liveness(instance_id, record.platform, history, now)
        if down is not None:
            summaries.append(down)
    inactivity = await _check_inactivity(instance_id, record.email, history, now)
    if inactivity is not None:
        summaries.append(inactivity)
    return summaries


async def run_alert_check() -> list[AlertSummary]:
    logger.info("alert_check_started")
    summaries: list[AlertSummary] = []
    for record in list_instances():
        if record.status != "active":
            continue
        try:
            summaries.extend(await check_instance_alerts(record.id))
        except Exception:  # noqa: BLE001 - one broken instance must not stop the sweep.
            logger.exception("alert_check_failed instance_id=%s", record.id)
    logger.info("alert_check_finished alerts=%s", len(summaries))
    return summaries


async def send_test_alert(instance_id: str, alert_type: str) -> bool:
    record = load_instance(instance_id)
    if record is None:
        raise InstanceNotFoundError(instance_id)
    if alert_type not in ALERT_TYPES:
        raise ValidationFailedError(f"Unknown alert type: {alert_type}")
    return await send_test_alert_email(get_settings().admin_email, instance_id, alert_type)


def get_active_alerts(now: datetime | None = None) -> list[ActiveAlert]:
    # Alerts sent within the last week across all instances, newest first.
    cutoff = (now or _utc_now()) - ACTIVE_ALERT_WINDOW
    active: list[ActiveAlert] = []
    for record in list_instances():
        history = load_alert_history(record.id)
        active.extend(
            ActiveAlert(instance_id=record.id, type=item.type, sent_at=item.sent_at, message=item.message)
            for item in history.alerts
            if item.sent_at >= cutoff
        )
    return sorted(active, key=lambda item: item.sent_at, reverse=True)


def get_alert_history(instance_id: str) -> AlertHistory:
    if load_instance(instance_id) is None:
        raise InstanceNotFoundError(instance_id)
    return load_alert_history(instance_id)


async def update_alert_settings(instance_id: str, patch: dict[str, Any]) -> AlertHistory:
    if load_instance(instance_id) is None:
        raise InstanceNotFoundError(instance_id)
    current = load_alert_history(instance_id).settings
    try:
        merged = AlertSettings.model_validate({**current.model_dump(), **patch})
    except ValidationError as exc:
        raise ValidationFailedError("Invalid alert settings") from exc

    def _apply(history: AlertHistory) -> None:
        history.settings = merged

    return await update_alert_history(instance_id, _apply)
