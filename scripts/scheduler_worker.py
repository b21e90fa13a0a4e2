from __future__ import annotations

import asyncio

from sphoto.core.logging import configure_logging
from sphoto.services.scheduler import run_startup_jobs, start_scheduler, stop_scheduler


async def _main() -> None:
    # Run the background loops in their own process when the API scheduler is disabled.
    # Exports run inside the API process, so their recovery stays there.
    configure_logging()
    await run_startup_jobs(recover_exports=False)
    tasks = start_scheduler()
    try:
        await asyncio.gather(*tasks)
    finally:
        await stop_scheduler(tasks)


if __name__ == "__main__":
    asyncio.run(_main())
