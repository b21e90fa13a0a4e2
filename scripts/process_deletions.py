from __future__ import annotations

import asyncio

from sphoto.core.logging import configure_logging
from sphoto.services.shared_users import process_scheduled_deletions


async def _main() -> None:
    # Delete shared-tier accounts whose grace period has passed.
    configure_logging()
    sweep = await process_scheduled_deletions()
    print(f"processed={sweep.processed}")
    print(f"deleted={len(sweep.deleted)}")
    for error in sweep.errors:
        print(f"error={error}")


if __name__ == "__main__":
    asyncio.run(_main())
