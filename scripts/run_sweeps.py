from __future__ import annotations

import argparse
import asyncio

from sphoto.core.logging import configure_logging
from sphoto.services.alerts import run_alert_check
from sphoto.services.export import cleanup_expired_exports
from sphoto.services.health import run_health_check
from sphoto.services.maintenance import check_maintenance_notifications
from sphoto.services.plans import reconcile_pending_downgrades


_SWEEPS = ("alerts", "health", "maintenance", "exports", "downgrades")


async def _run(selected: list[str]) -> None:
    if "alerts" in selected:
        summaries = await run_alert_check()
        print(f"alerts_sent={len(summaries)}")
    if "health" in selected:
        summary = await run_health_check()
        print(f"healthy={summary.healthy_instances}/{summary.total_instances}")
    if "maintenance" in selected:
        changed = await check_maintenance_notifications()
        print(f"maintenance_changed={str(changed).lower()}")
    if "exports" in selected:
        cleanup = await cleanup_expired_exports()
        print(f"exports_expired={cleanup.expired_jobs} orphans_removed={cleanup.orphan_archives}")
    if "downgrades" in selected:
        applied = await reconcile_pending_downgrades()
        print(f"downgrades_applied={len(applied)}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run periodic sweeps once")
    parser.add_argument("--only", action="append", choices=_SWEEPS, help="repeatable; defaults to all sweeps")
    args = parser.parse_args()
    configure_logging()
    asyncio.run(_run(args.only or list(_SWEEPS)))


if __name__ == "__main__":
    main()
