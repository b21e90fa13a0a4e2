from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from sphoto.core.config import get_settings
from sphoto.domain.models import InstanceMetadata
from sphoto.providers.http import tenant_http_client
from sphoto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

GIB = 1024 * 1024 * 1024


@dataclass(frozen=True)
class ComposeContext:
    # Inputs for rendering one tenant's compose project.
    instance_id: str
    email: str
    password: str
    db_password: str
    uploads_volume: str
    storage_gb: int


@dataclass(frozen=True)
class AdminBootstrap:
    api_key: str | None
    admin_user: str | None


@dataclass(frozen=True)
class LivenessResult:
    healthy: bool
    status_code: int | None
    response_time_ms: float
    error: str | None = None


class TenantPlatform(Protocol):
    name: str
    liveness_path: str
    service_port: int

    @property
    def ready_attempts(self) -> int:
        ...

    def render_compose(self, ctx: ComposeContext) -> dict[str, Any]:
        ...

    async def wait_until_ready(self, base_url: str) -> bool:
        ...

    async def bootstrap_admin(
        self, *, base_url: str, instance_id: str, email: str, password: str, storage_gb: int
    ) -> AdminBootstrap:
        ...

    async def set_quota(self, record: InstanceMetadata, storage_gb: int) -> bool:
        ...

    async def check_liveness(self, base_url: str, timeout_s: float) -> LivenessResult:
        ...


def instance_url(instance_id: str) -> str:
    return f"https://{instance_id}.{get_settings().domain}"


def traefik_labels(instance_id: str, port: int) -> list[str]:
    # Routing labels consumed by the reverse proxy on the shared network.
    domain = get_settings().domain
    return [
        "traefik.enable=true",
        f"traefik.http.routers.{instance_id}.rule=Host(`{instance_id}.{domain}`)",
        f"traefik.http.routers.{instance_id}.entrypoints=websecure",
        f"traefik.http.routers.{instance_id}.tls.certresolver=le",
        f"traefik.http.services.{instance_id}.loadbalancer.server.port={port}",
    ]


class HttpPlatformMixin:
    # Shared readiness and liveness polling over the platform's liveness path.
    liveness_path: str = "/"

    @property
    def ready_attempts(self) -> int:
        return 30

    async def check_liveness(self, base_url: str, timeout_s: float) -> LivenessResult:
        start = time.monotonic()
        try:
            async with tenant_http_client(timeout_s) as client:
                response = await client.get(f"{base_url}{self.liveness_path}")
        except httpx.HTTPError as exc:
            elapsed = (time.monotonic() - start) * 1000.0
            record_external_call(integration="tenant_app", latency_ms=elapsed, success=False)
            return LivenessResult(
                healthy=False,
                status_code=None,
                response_time_ms=elapsed,
                error=str(exc) or exc.__class__.__name__,
            )
        elapsed = (time.monotonic() - start) * 1000.0
        healthy = response.is_success
        record_external_call(integration="tenant_app", latency_ms=elapsed, success=healthy)
        return LivenessResult(
            healthy=healthy,
            status_code=response.status_code,
            response_time_ms=elapsed,
            error=None if healthy else f"HTTP {response.status_code}",
        )

    async def wait_until_ready(self, base_url: str) -> bool:
        # Poll until the app answers or the attempt budget is spent; containers stay up either way.
        settings = get_settings()
        for attempt in range(self.ready_attempts):
            result = await self.check_liveness(base_url, settings.liveness_timeout_s)
            if result.healthy:
                logger.info("instance_ready url=%s attempts=%s", base_url, attempt + 1)
                return True
            await asyncio.sleep(settings.ready_poll_interval_s)
        logger.warning("instance_not_ready url=%s attempts=%s", base_url, self.ready_attempts)
        return False
