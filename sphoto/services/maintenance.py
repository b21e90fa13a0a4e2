from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Literal

from sphoto.core.errors import MaintenanceNotFoundError, MaintenanceStateError, ValidationFailedError
from sphoto.domain.models import Maintenance, MaintenanceType
from sphoto.persistence.repos.instances import list_instances
from sphoto.persistence.repos.maintenance import (
    MAINTENANCE_LOCK_KEY,
    load_maintenances,
    save_maintenances,
)
from sphoto.persistence.store import locked
from sphoto.services.email import (
    send_maintenance_completed_email,
    send_maintenance_reminder_email,
    send_maintenance_scheduled_email,
    send_maintenance_started_email,
)


logger = logging.getLogger(__name__)

NOTICE_WINDOW = timedelta(hours=48)
REMINDER_WINDOW = timedelta(hours=2)
PUBLIC_HORIZON = timedelta(days=7)
PUBLIC_UPCOMING_LIMIT = 5

_BASE36 = string.ascii_lowercase + string.digits
_UPDATABLE_FIELDS = (
    "title",
    "description",
    "type",
    "scheduled_start",
    "scheduled_end",
    "affected_instances",
)

Notifier = Callable[[list[str], Maintenance], Awaitable[bool]]


@dataclass(frozen=True)
class ActiveMaintenance:
    id: str
    title: str
    description: str
    type: MaintenanceType
    expected_end: datetime


@dataclass(frozen=True)
class UpcomingMaintenance:
    id: str
    title: str
    scheduled_start: datetime
    scheduled_end: datetime
    type: MaintenanceType


@dataclass(frozen=True)
class PublicStatus:
    operational: bool
    active_maintenance: ActiveMaintenance | None = None
    scheduled_maintenance: list[UpcomingMaintenance] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _generate_id(now: datetime) -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"maint-{int(now.timestamp() * 1000)}-{suffix}"


def affected_emails(maintenance: Maintenance) -> list[str]:
    # Unique customer emails of active instances in scope, in first-seen order.
    emails: list[str] = []
    for record in list_instances():
        if record.status != "active":
            continue
        if maintenance.affected_instances != "all" and record.id not in maintenance.affected_instances:
            continue
        if record.email not in emails:
            emails.append(record.email)
    return emails


async def _notify(maintenance: Maintenance, notifier: Notifier, stage: str) -> int:
    # One message per recipient so customers never see each other's addresses.
    sent = 0
    for email in affected_emails(maintenance):
        if await notifier([email], maintenance):
            sent += 1
    logger.info("maintenance_notified maintenance_id=%s stage=%s sent=%s", maintenance.id, stage, sent)
    return sent


def _find(items: list[Maintenance], maintenance_id: str) -> Maintenance:
    for item in items:
        if item.id == maintenance_id:
            return item
    raise MaintenanceNotFoundError(f"Maintenance not found: {maintenance_id}")


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from clients are taken as UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _validate_window(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValidationFailedError("scheduled_end must be after scheduled_start")


def list_maintenances() -> list[Maintenance]:
    return sorted(load_maintenances(), key=lambda item: item.scheduled_start, reverse=True)


def get_maintenance(maintenance_id: str) -> Maintenance | None:
    return next((item for item in load_maintenances() if item.id == maintenance_id), None)


async def create_maintenance(
    *,
    title: str,
    scheduled_start: datetime,
    scheduled_end: datetime,
    description: str = "",
    type: MaintenanceType = "update",
    affected_instances: list[str] | Literal["all"] = "all",
    created_by: str = "admin",
    now: datetime | None = None,
) -> Maintenance:
    scheduled_start = _as_utc(scheduled_start)
    scheduled_end = _as_utc(scheduled_end)
    _validate_window(scheduled_start, scheduled_end)
    now = now or _utc_now()
    maintenance = Maintenance(
        id=_generate_id(now),
        title=title,
        description=description,
        type=type,
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        affected_instances=affected_instances,
        created_at=now,
        created_by=created_by,
    )
    async with locked(MAINTENANCE_LOCK_KEY):
        items = load_maintenances()
        items.append(maintenance)
        save_maintenances(items)
        # Windows starting within the reminder horizon only get the reminder.
        if scheduled_start - now > REMINDER_WINDOW:
            await _notify(maintenance, send_maintenance_scheduled_email, "scheduled")
            maintenance.notifications_sent.scheduled = True
            save_maintenances(items)
    logger.info("maintenance_created maintenance_id=%s start=%s", maintenance.id, scheduled_start.isoformat())
    return maintenance


async def update_maintenance(maintenance_id: str, updates: dict[str, Any]) -> Maintenance:
    async with locked(MAINTENANCE_LOCK_KEY):
        items = load_maintenances()
        maintenance = _find(items, maintenance_id)
        if maintenance.status != "scheduled":
            raise MaintenanceStateError("Can only update scheduled maintenances")
        patch = {key: value for key, value in updates.items() if key in _UPDATABLE_FIELDS and value is not None}
        for key in ("scheduled_start", "scheduled_end"):
            if key in patch:
                patch[key] = _as_utc(patch[key])
        candidate = maintenance.model_copy(update=patch)
        _validate_window(candidate.scheduled_start, candidate.scheduled_end)
        for key, value in patch.items():
            setattr(maintenance, key, value)
        save_maintenances(items)
    logger.info("maintenance_updated maintenance_id=%s fields=%s", maintenance_id, ",".join(sorted(patch)))
    return maintenance


async def cancel_maintenance(maintenance_id: str) -> Maintenance:
    async with locked(MAINTENANCE_LOCK_KEY):
        items = load_maintenances()
        maintenance = _find(items, maintenance_id)
        if maintenance.status in ("completed", "cancelled"):
            raise MaintenanceStateError("Maintenance already completed or cancelled")
        maintenance.status = "cancelled"
        save_maintenances(items)
    logger.info("maintenance_cancelled maintenance_id=%s", maintenance_id)
    return maintenance


async def _start(maintenance: Maintenance, now: datetime) -> None:
    maintenance.status = "in_progress"
    maintenance.actual_start = now
    if not maintenance.notifications_sent.started:
        await _notify(maintenance, send_maintenance_started_email, "started")
        maintenance.notifications_sent.started = True


async def _complete(maintenance: Maintenance, now: datetime) -> None:
    maintenance.status = "completed"
    maintenance.actual_end = now
    if not maintenance.notifications_sent.completed:
        await _notify(maintenance, send_maintenance_completed_email, "completed")
        maintenance.notifications_sent.completed = True


async def start_maintenance(maintenance_id: str) -> Maintenance:
    async with locked(MAINTENANCE_LOCK_KEY):
        items = load_maintenances()
        maintenance = _find(items, maintenance_id)
        if maintenance.status != "scheduled":
            raise MaintenanceStateError("Can only start scheduled maintenances")
        await _start(maintenance, _utc_now())
        save_maintenances(items)
    logger.info("maintenance_started maintenance_id=%s", maintenance_id)
    return maintenance


async def complete_maintenance(maintenance_id: str) -> Maintenance:
    async with locked(MAINTENANCE_LOCK_KEY):
        items = load_maintenances()
        maintenance = _find(items, maintenance_id)
        if maintenance.status not in ("scheduled", "in_progress"):
            raise MaintenanceStateError("Can only complete in-progress or scheduled maintenances")
        await _complete(maintenance, _utc_now())
        save_maintenances(items)
    logger.info("maintenance_completed maintenance_id=%s", maintenance_id)
    return maintenance


def get_public_status(now: datetime | None = None) -> PublicStatus:
    now = now or _utc_now()
    items = load_maintenances()
    active = next((item for item in items if item.status == "in_progress"), None)
    horizon = now + PUBLIC_HORIZON
    upcoming = sorted(
        (
            item
            for item in items
            if item.status == "scheduled" and now < item.scheduled_start <= horizon
        ),
        key=lambda item: item.scheduled_start,
    )[:PUBLIC_UPCOMING_LIMIT]
    return PublicStatus(
        operational=active is None,
        active_maintenance=(
            ActiveMaintenance(
                id=active.id,
                title=active.title,
                description=active.description,
                type=active.type,
                expected_end=active.scheduled_end,
            )
            if active
            else None
        ),
        scheduled_maintenance=[
            UpcomingMaintenance(
                id=item.id,
                title=item.title,
                scheduled_start=item.scheduled_start,
                scheduled_end=item.scheduled_end,
                type=item.type,
            )
            for item in upcoming
        ],
    )


async def check_maintenance_notifications(now: datetime | None = None) -> bool:
    """Advance scheduled windows and send stage notifications once each.

    Sends the 48 h notice and the 2 h reminder, starts windows whose start has
    passed and completes running windows whose end has passed. Returns True
    when anything changed.
    """
    now = now or _utc_now()
    changed = False
    async with locked(MAINTENANCE_LOCK_KEY):
        items = load_maintenances()
        for maintenance in items:
            if maintenance.status != "scheduled":
                continue
            until_start = maintenance.scheduled_start - now
            sent = maintenance.notifications_sent
            if REMINDER_WINDOW < until_start <= NOTICE_WINDOW and not sent.scheduled:
                await _notify(maintenance, send_maintenance_scheduled_email, "scheduled")
                sent.scheduled = True
                changed = True
            if timedelta(0) < until_start <= REMINDER_WINDOW and not sent.reminder:
                await _notify(maintenance, send_maintenance_reminder_email, "reminder")
                sent.reminder = True
                changed = True
            if until_start <= timedelta(0):
                await _start(maintenance, now)
                changed = True
        for maintenance in items:
            if maintenance.status == "in_progress" and now >= maintenance.scheduled_end:
                await _complete(maintenance, now)
                changed = True
        if changed:
            save_maintenances(items)
    return changed
