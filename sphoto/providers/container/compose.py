from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from sphoto.core.config import get_settings
from sphoto.core.errors import ContainerEngineError
from sphoto.providers.shell import CommandResult, run_command
from sphoto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


class DockerComposeEngine:
    def __init__(self, binary: str = "docker") -> None:
        self._binary = binary

    async def _run(self, args: list[str], *, cwd: Path | None = None) -> CommandResult:
        # Every engine call is timed and failures surface as ContainerEngineError.
        timeout = get_settings().compose_timeout_s
        start = time.monotonic()
        try:
            result = await run_command([self._binary, *args], cwd=cwd, timeout_s=timeout)
        except asyncio.TimeoutError as exc:
            record_external_call(
                integration="container_engine",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise ContainerEngineError(f"{' '.join(args[:2])} timed out after {timeout}s") from exc
        except OSError as exc:
            record_external_call(
                integration="container_engine",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise ContainerEngineError(f"{self._binary} not executable: {exc}") from exc
        record_external_call(
            integration="container_engine",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=result.ok,
        )
        return result

    async def up(self, project_dir: Path) -> None:
        result = await self._run(["compose", "up", "-d"], cwd=project_dir)
        if not result.ok:
            logger.warning("compose_up_failed dir=%s stderr=%s", project_dir, result.stderr.strip())
            raise ContainerEngineError(f"compose up failed: {result.stderr.strip()}")

    async def down(self, project_dir: Path, *, remove_volumes: bool = False) -> None:
        args = ["compose", "down"]
        if remove_volumes:
            args.append("-v")
        result = await self._run(args, cwd=project_dir)
        if not result.ok:
            logger.warning("compose_down_failed dir=%s stderr=%s", project_dir, result.stderr.strip())
            raise ContainerEngineError(f"compose down failed: {result.stderr.strip()}")

    async def exec(self, container: str, args: list[str], *, user: str | None = None) -> CommandResult:
        argv = ["exec"]
        if user:
            argv.extend(["-u", user])
        argv.append(container)
        argv.extend(args)
        return await self._run(argv)
