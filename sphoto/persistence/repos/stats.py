from __future__ import annotations

from datetime import date
from pathlib import Path

from sphoto.core.config import get_settings
from sphoto.domain.models import DailyStats
from sphoto.persistence.store import read_model, write_model


def _stats_path(day: str) -> Path:
    return get_settings().stats_dir / f"{day}.json"


def save_daily_stats(stats: DailyStats) -> None:
    write_model(_stats_path(stats.date), stats)


def load_daily_stats(day: str) -> DailyStats | None:
    return read_model(_stats_path(day), DailyStats)


def list_stats_dates() -> list[str]:
    # Ascending ISO dates for which a snapshot file exists.
    root = get_settings().stats_dir
    if not root.is_dir():
        return []
    days: list[str] = []
    for path in root.glob("*.json"):
        try:
            date.fromisoformat(path.stem)
        except ValueError:
            continue
        days.append(path.stem)
    return sorted(days)


def delete_daily_stats(day: str) -> None:
    _stats_path(day).unlink(missing_ok=True)
