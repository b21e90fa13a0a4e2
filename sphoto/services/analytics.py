from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sphoto.core.config import get_settings
from sphoto.domain.models import DailyStats, InstanceDailyStats
from sphoto.persistence.repos.instances import list_instances, load_instance
from sphoto.persistence.repos.stats import (
    delete_daily_stats,
    list_stats_dates,
    load_daily_stats,
    save_daily_stats,
)
from sphoto.services.usage import directory_size_and_count, uploads_path


logger = logging.getLogger(__name__)

MAX_ANALYTICS_DAYS = 90
CHURN_MIN_SNAPSHOTS = 14
CHURN_IDLE_DAYS = 14
INACTIVE_STOPPED_DAYS = 14
TOP_INSTANCES = 10


@dataclass(frozen=True)
class UploadPoint:
    date: str
    uploads: int


@dataclass(frozen=True)
class StoragePoint:
    date: str
    total_bytes: int


@dataclass(frozen=True)
class TopInstance:
    id: str
    storage_bytes: int
    files: int


@dataclass(frozen=True)
class ChurnCandidate:
    id: str
    last_activity: str


@dataclass(frozen=True)
class AnalyticsReport:
    upload_trend: list[UploadPoint] = field(default_factory=list)
    storage_growth: list[StoragePoint] = field(default_factory=list)
    active_instances: int = 0
    inactive_instances: int = 0
    top_instances: list[TopInstance] = field(default_factory=list)
    churn_risk: list[ChurnCandidate] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return _utc_now().date()


async def collect_daily_stats(day: date | None = None) -> DailyStats:
    # Snapshot storage bytes and file counts for every non-deleted instance.
    day = day or _today()
    stats = DailyStats(date=day.isoformat())
    for record in list_instances():
        if record.status == "deleted":
            continue
        usage = await directory_size_and_count(uploads_path(record.id))
        stats.instances[record.id] = InstanceDailyStats(storage_bytes=usage.bytes, files=usage.files)
    return stats


def cleanup_old_stats(today: date | None = None) -> list[str]:
    today = today or _today()
    cutoff = (today - timedelta(days=get_settings().stats_retention_days)).isoformat()
    removed: list[str] = []
    for day in list_stats_dates():
        if day < cutoff:
            delete_daily_stats(day)
            removed.append(day)
            logger.info("stats_snapshot_pruned date=%s", day)
    return removed


async def store_daily_stats() -> DailyStats:
    stats = await collect_daily_stats()
    save_daily_stats(stats)
    cleanup_old_stats()
    return stats


async def run_daily_stats_collection() -> DailyStats | None:
    logger.info("daily_stats_collection_started")
    try:
        stats = await store_daily_stats()
    except Exception:  # noqa: BLE001 - scheduled job logs and waits for the next run.
        logger.exception("daily_stats_collection_failed")
        return None
    logger.info(
        "daily_stats_collection_finished date=%s instances=%s", stats.date, len(stats.instances)
    )
    return stats


def _load_window(days: int, today: date) -> list[DailyStats]:
    snapshots: list[DailyStats] = []
    for offset in range(days):
        snapshot = load_daily_stats((today - timedelta(days=offset)).isoformat())
        if snapshot is not None:
            snapshots.append(snapshot)
    return sorted(snapshots, key=lambda item: item.date)


def _total_files(snapshot: DailyStats) -> int:
    return sum(item.files for item in snapshot.instances.values())


def _last_change(snapshots: list[DailyStats], instance_id: str) -> str | None:
    # Date of the last snapshot whose file count differs from the previous one; starts from zero files.
    last_date: str | None = None
    last_files = 0
    for snapshot in snapshots:
        entry = snapshot.instances.get(instance_id)
        if entry is None:
            continue
        if entry.files != last_files:
            last_date = snapshot.date
            last_files = entry.files
    return last_date


def _count_inactive(now: datetime) -> int:
    cutoff = now - timedelta(days=INACTIVE_STOPPED_DAYS)
    count = 0
    for record in list_instances():
        if record.status != "stopped":
            continue
        # Missing stop timestamps count as long stopped.
        if record.stopped_at is None or record.stopped_at < cutoff:
            count += 1
    return count


def _churn_risk(snapshots: list[DailyStats]) -> list[ChurnCandidate]:
    if len(snapshots) < CHURN_MIN_SNAPSHOTS:
        return []
    latest = snapshots[-1]
    reference = date.fromisoformat(latest.date)
    candidates: list[ChurnCandidate] = []
    for instance_id in latest.instances:
        last_activity = _last_change(snapshots, instance_id)
        if last_activity is None:
            continue
        idle_days = (reference - date.fromisoformat(last_activity)).days
        if idle_days >= CHURN_IDLE_DAYS:
            candidates.append(ChurnCandidate(id=instance_id, last_activity=last_activity))
    return sorted(candidates, key=lambda item: item.last_activity)


def get_analytics(days: int = 30, *, now: datetime | None = None) -> AnalyticsReport:
    now = now or _utc_now()
    days = max(1, min(days, MAX_ANALYTICS_DAYS))
    snapshots = _load_window(days, now.date())

    upload_trend = [
        UploadPoint(
            date=current.date,
            uploads=max(0, _total_files(current) - _total_files(previous)),
        )
        for previous, current in zip(snapshots, snapshots[1:])
    ]
    storage_growth = [
        StoragePoint(
            date=snapshot.date,
            total_bytes=sum(item.storage_bytes for item in snapshot.instances.values()),
        )
        for snapshot in snapshots
    ]
    latest = snapshots[-1] if snapshots else None
    top_instances: list[TopInstance] = []
    if latest is not None:
        ranked = sorted(latest.instances.items(), key=lambda pair: pair[1].storage_bytes, reverse=True)
        top_instances = [
            TopInstance(id=instance_id, storage_bytes=entry.storage_bytes, files=entry.files)
            for instance_id, entry in ranked[:TOP_INSTANCES]
        ]

    return AnalyticsReport(
        upload_trend=upload_trend,
        storage_growth=storage_growth,
        active_instances=len(latest.instances) if latest else 0,
        inactive_instances=_count_inactive(now),
        top_instances=top_instances,
        churn_risk=_churn_risk(snapshots),
    )


def last_activity_date(instance_id: str) -> date | None:
    # Last file-count change across retained snapshots, else the creation date.
    snapshots = [
        snapshot
        for snapshot in (load_daily_stats(day) for day in list_stats_dates())
        if snapshot is not None
    ]
    changed = _last_change(snapshots, instance_id)
    if changed is not None:
        return date.fromisoformat(changed)
    record = load_instance(instance_id)
    if record is None:
        return None
    return record.created.date()
