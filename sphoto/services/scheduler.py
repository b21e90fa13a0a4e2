from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from sphoto.core.config import get_settings
from sphoto.services.alerts import run_alert_check
from sphoto.services.analytics import run_daily_stats_collection
from sphoto.services.export import cleanup_expired_exports, drain_exports, recover_interrupted_exports
from sphoto.services.health import run_health_check
from sphoto.services.maintenance import check_maintenance_notifications
from sphoto.services.plans import reconcile_pending_downgrades
from sphoto.services.shared_users import process_scheduled_deletions


logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


def seconds_until_midnight(now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(1.0, (midnight - now).total_seconds())


async def run_startup_jobs(*, recover_exports: bool = True) -> None:
    # Only the process that runs export tasks may fail leftovers from its previous run.
    try:
        if recover_exports:
            await recover_interrupted_exports()
        await cleanup_expired_exports()
    except Exception:  # noqa: BLE001 - startup must continue while surfacing errors in logs.
        logger.exception("scheduler_startup_jobs_failed")


async def _interval_loop(name: str, job: Job, interval_s: float) -> None:
    interval_s = max(1.0, float(interval_s))
    while True:
        await asyncio.sleep(interval_s)
        try:
            await job()
        except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
            logger.exception("scheduled_job_failed job=%s", name)


async def _daily_stats_loop() -> None:
    # Collect once on start, then at every UTC midnight.
    await run_daily_stats_collection()
    while True:
        await asyncio.sleep(seconds_until_midnight())
        await run_daily_stats_collection()


def start_scheduler() -> list[asyncio.Task]:
    settings = get_settings()
    loops: list[tuple[str, Awaitable[None]]] = [
        ("daily_stats", _daily_stats_loop()),
        ("alerts", _interval_loop("alerts", run_alert_check, settings.alert_check_interval_s)),
        ("health", _interval_loop("health", run_health_check, settings.health_check_interval_s)),
        (
            "maintenance",
            _interval_loop(
                "maintenance", check_maintenance_notifications, settings.maintenance_check_interval_s
            ),
        ),
        (
            "export_cleanup",
            _interval_loop("export_cleanup", cleanup_expired_exports, settings.export_cleanup_interval_s),
        ),
        (
            "deletions",
            _interval_loop("deletions", process_scheduled_deletions, settings.deletion_check_interval_s),
        ),
        (
            "downgrades",
            _interval_loop(
                "downgrades", reconcile_pending_downgrades, settings.downgrade_reconcile_interval_s
            ),
        ),
    ]
    tasks = [asyncio.create_task(coro, name=f"sphoto-{name}") for name, coro in loops]
    logger.info("scheduler_started loops=%s", len(tasks))
    return tasks


async def stop_scheduler(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await drain_exports()
    logger.info("scheduler_stopped")
