from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from sphoto.domain.models import DailyStats, InstanceDailyStats
from sphoto.persistence.repos.stats import list_stats_dates, load_daily_stats, save_daily_stats
from sphoto.services import analytics
from sphoto.tests.utils.factories import make_instance, utc_now, write_upload


NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


def _snapshot(day: date, **instances: tuple[int, int]) -> DailyStats:
    stats = DailyStats(
        date=day.isoformat(),
        instances={
            instance_id: InstanceDailyStats(storage_bytes=size, files=files)
            for instance_id, (size, files) in instances.items()
        },
    )
    save_daily_stats(stats)
    return stats


@pytest.mark.asyncio
async def test_collect_skips_deleted_instances() -> None:
    make_instance("anna-ab12")
    make_instance("gone-zz99", status="deleted")
    write_upload("anna-ab12", "a.jpg", 100)
    write_upload("anna-ab12", "album/b.jpg", 50)

    stats = await analytics.collect_daily_stats(date(2026, 3, 1))

    assert stats.date == "2026-03-01"
    assert set(stats.instances) == {"anna-ab12"}
    assert stats.instances["anna-ab12"].storage_bytes == 150
    assert stats.instances["anna-ab12"].files == 2


@pytest.mark.asyncio
async def test_store_daily_stats_persists_todays_snapshot() -> None:
    make_instance("anna-ab12")
    stats = await analytics.store_daily_stats()
    assert load_daily_stats(stats.date) == stats


def test_cleanup_removes_snapshots_outside_retention() -> None:
    today = date(2026, 3, 31)
    _snapshot(today - timedelta(days=120))
    _snapshot(today - timedelta(days=10))

    removed = analytics.cleanup_old_stats(today)

    assert removed == [(today - timedelta(days=120)).isoformat()]
    assert list_stats_dates() == [(today - timedelta(days=10)).isoformat()]


def test_report_trends_and_top_instances() -> None:
    today = NOW.date()
    _snapshot(today - timedelta(days=2), a=(100, 10), b=(50, 5))
    _snapshot(today - timedelta(days=1), a=(150, 14), b=(50, 5))
    _snapshot(today, a=(150, 12), b=(500, 9))

    report = analytics.get_analytics(7, now=NOW)

    assert [point.uploads for point in report.upload_trend] == [4, 2]
    assert [point.total_bytes for point in report.storage_growth] == [150, 200, 650]
    assert report.active_instances == 2
    assert [item.id for item in report.top_instances] == ["b", "a"]
    assert report.churn_risk == []


def test_report_window_is_clamped() -> None:
    _snapshot(NOW.date() - timedelta(days=100), a=(1, 1))
    report = analytics.get_analytics(500, now=NOW)
    assert report.storage_growth == []


def test_churn_risk_needs_two_weeks_of_history() -> None:
    today = NOW.date()
    for offset in range(20, -1, -1):
        day = today - timedelta(days=offset)
        busy_files = 100 + (20 - offset)
        idle_files = 40 if offset <= 18 else 30
        _snapshot(day, busy=(1000, busy_files), idle=(500, idle_files))

    report = analytics.get_analytics(30, now=NOW)

    assert [item.id for item in report.churn_risk] == ["idle"]
    assert report.churn_risk[0].last_activity == (today - timedelta(days=18)).isoformat()


def test_inactive_counts_long_stopped_instances() -> None:
    make_instance("old-aa11", status="stopped", stopped_at=NOW - timedelta(days=30))
    make_instance("new-bb22", status="stopped", stopped_at=NOW - timedelta(days=2))
    make_instance("unknown-cc33", status="stopped")
    make_instance("live-dd44")

    report = analytics.get_analytics(7, now=NOW)

    assert report.inactive_instances == 2


def test_last_activity_falls_back_to_creation_date() -> None:
    created = utc_now() - timedelta(days=40)
    make_instance("anna-ab12", created=created)
    assert analytics.last_activity_date("anna-ab12") == created.date()
    assert analytics.last_activity_date("missing-xx00") is None


def test_last_activity_uses_latest_file_count_change() -> None:
    make_instance("anna-ab12")
    _snapshot(date(2026, 3, 1), **{"anna-ab12": (10, 2)})
    _snapshot(date(2026, 3, 2), **{"anna-ab12": (12, 3)})
    _snapshot(date(2026, 3, 3), **{"anna-ab12": (12, 3)})
    assert analytics.last_activity_date("anna-ab12") == date(2026, 3, 2)
