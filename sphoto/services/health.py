from __future__ import annotations

import asyncio
import logging
import socket
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sphoto.core.config import get_settings
from sphoto.domain.models import HealthState, HealthStatus, InstanceMetadata
from sphoto.persistence.repos.alerts import load_alert_history
from sphoto.persistence.repos.health import HEALTH_LOCK_KEY, load_health_state, save_health_state
from sphoto.persistence.repos.instances import list_instances
from sphoto.persistence.store import locked
from sphoto.providers.platforms.base import instance_url
from sphoto.providers.platforms.factory import get_platform
from sphoto.services.alerts import is_on_cooldown, record_alert
from sphoto.services.email import send_health_transition_email, send_ssl_critical_email


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SslInfo:
    valid: bool
    expires_at: datetime
    days_remaining: int


@dataclass(frozen=True)
class HealthSummary:
    total_instances: int
    healthy_instances: int
    unhealthy_instances: int
    ssl_expiring_instances: int
    statuses: list[HealthStatus] = field(default_factory=list)
    last_full_check: datetime | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _read_peer_expiry(hostname: str, timeout_s: float) -> datetime | None:
    context = ssl.create_default_context()
    with socket.create_connection((hostname, 443), timeout=timeout_s) as sock:
        with context.wrap_socket(sock, server_hostname=hostname) as tls:
            cert = tls.getpeercert()
    not_after = (cert or {}).get("notAfter")
    if not not_after:
        return None
    return datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)


async def check_ssl_expiry(hostname: str) -> SslInfo | None:
    # Handshake failures and timeouts mean "unknown", not "expired".
    try:
        expires_at = await asyncio.to_thread(_read_peer_expiry, hostname, get_settings().ssl_timeout_s)
    except (OSError, ValueError) as exc:
        logger.info("ssl_check_failed hostname=%s error=%s", hostname, exc)
        return None
    if expires_at is None:
        return None
    days_remaining = (expires_at - _utc_now()).days
    return SslInfo(valid=days_remaining > 0, expires_at=expires_at, days_remaining=days_remaining)


async def check_instance_health(record: InstanceMetadata) -> HealthStatus:
    settings = get_settings()
    url = instance_url(record.id)
    liveness = await get_platform(record.platform).check_liveness(url, settings.health_timeout_s)
    status = HealthStatus(
        instance_id=record.id,
        url=url,
        healthy=liveness.healthy,
        status_code=liveness.status_code,
        response_time_ms=round(liveness.response_time_ms, 1) if liveness.healthy else None,
        checked_at=_utc_now(),
        error=liveness.error,
    )
    ssl_info = await check_ssl_expiry(f"{record.id}.{settings.domain}")
    if ssl_info is not None:
        status.ssl_valid = ssl_info.valid
        status.ssl_expires_at = ssl_info.expires_at
        status.ssl_days_remaining = ssl_info.days_remaining
    return status


def _carry_over(status: HealthStatus, previous: HealthStatus | None) -> None:
    if status.healthy:
        status.consecutive_failures = 0
        status.last_healthy_at = status.checked_at
        return
    status.consecutive_failures = (previous.consecutive_failures if previous else 0) + 1
    status.last_healthy_at = previous.last_healthy_at if previous else None


def _is_transition(status: HealthStatus, previous: HealthStatus | None) -> bool:
    # First check that finds the instance down also counts as a transition.
    if previous is None:
        return not status.healthy
    return previous.healthy != status.healthy


async def _maybe_alert_ssl(status: HealthStatus) -> bool:
    days = status.ssl_days_remaining
    if days is None or status.ssl_expires_at is None or days > get_settings().ssl_critical_days:
        return False
    if is_on_cooldown(load_alert_history(status.instance_id), "ssl_expiry"):
        return False
    await send_ssl_critical_email(status.instance_id, days, status.ssl_expires_at)
    await record_alert(status.instance_id, "ssl_expiry", f"Certificate expires in {days} days")
    return True


def _summarize(statuses: list[HealthStatus], last_full_check: datetime | None) -> HealthSummary:
    warning_days = get_settings().ssl_warning_days
    healthy = sum(1 for status in statuses if status.healthy)
    expiring = sum(
        1
        for status in statuses
        if status.ssl_days_remaining is not None and status.ssl_days_remaining <= warning_days
    )
    return HealthSummary(
        total_instances=len(statuses),
        healthy_instances=healthy,
        unhealthy_instances=len(statuses) - healthy,
        ssl_expiring_instances=expiring,
        statuses=statuses,
        last_full_check=last_full_check,
    )


async def run_health_check() -> HealthSummary:
    logger.info("health_check_started")
    statuses: list[HealthStatus] = []
    async with locked(HEALTH_LOCK_KEY):
        state = load_health_state()
        for record in list_instances():
            if record.status != "active":
                continue
            try:
                status = await check_instance_health(record)
                previous = state.statuses.get(record.id)
                _carry_over(status, previous)
                if _is_transition(status, previous):
                    await send_health_transition_email(
                        record.id, status.healthy, status.error, status.consecutive_failures
                    )
                    logger.warning(
                        "instance_health_changed instance_id=%s healthy=%s", record.id, status.healthy
                    )
                await _maybe_alert_ssl(status)
            except Exception:  # noqa: BLE001 - keep sweeping the remaining instances.
                logger.exception("health_check_failed instance_id=%s", record.id)
                continue
            state.statuses[record.id] = status
            statuses.append(status)
        state.last_full_check = _utc_now()
        save_health_state(state)
    summary = _summarize(statuses, state.last_full_check)
    logger.info(
        "health_check_finished healthy=%s total=%s ssl_expiring=%s",
        summary.healthy_instances,
        summary.total_instances,
        summary.ssl_expiring_instances,
    )
    return summary


def get_health_summary() -> HealthSummary:
    state: HealthState = load_health_state()
    return _summarize(list(state.statuses.values()), state.last_full_check)


def get_instance_health(instance_id: str) -> HealthStatus | None:
    return load_health_state().statuses.get(instance_id)
