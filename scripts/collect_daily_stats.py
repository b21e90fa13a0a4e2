from __future__ import annotations

import argparse
import asyncio
from datetime import date

from sphoto.core.logging import configure_logging
from sphoto.persistence.repos.stats import save_daily_stats
from sphoto.services.analytics import cleanup_old_stats, collect_daily_stats


async def _collect(day: date | None, prune: bool) -> None:
    stats = await collect_daily_stats(day)
    save_daily_stats(stats)
    print(f"stats_date={stats.date}")
    print(f"instances={len(stats.instances)}")
    if prune:
        removed = cleanup_old_stats()
        print(f"pruned_snapshots={len(removed)}")


def main() -> None:
    # Snapshot storage usage once, e.g. from cron when the API runs without a scheduler.
    parser = argparse.ArgumentParser(description="Collect one daily usage snapshot")
    parser.add_argument("--date", default=None, help="YYYY-MM-DD, defaults to today (UTC)")
    parser.add_argument("--no-prune", action="store_true")
    args = parser.parse_args()
    configure_logging()
    day = date.fromisoformat(args.date) if args.date else None
    asyncio.run(_collect(day, not args.no_prune))


if __name__ == "__main__":
    main()
