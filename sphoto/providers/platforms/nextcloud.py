from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from sphoto.core.config import get_settings
from sphoto.core.errors import ContainerEngineError
from sphoto.domain.models import InstanceMetadata
from sphoto.providers.container.factory import get_container_engine
from sphoto.providers.http import tenant_http_client
from sphoto.providers.platforms.base import (
    GIB,
    AdminBootstrap,
    ComposeContext,
    HttpPlatformMixin,
    instance_url,
    traefik_labels,
)


logger = logging.getLogger(__name__)

DEFAULT_ADMIN_USER = "admin"


class NextcloudPlatform(HttpPlatformMixin):
    name = "nextcloud"
    liveness_path = "/status.php"
    service_port = 80

    @property
    def ready_attempts(self) -> int:
        return get_settings().nextcloud_ready_attempts

    def render_compose(self, ctx: ComposeContext) -> dict[str, Any]:
        settings = get_settings()
        prefix = f"sphoto-{ctx.instance_id}"
        host = f"{ctx.instance_id}.{settings.domain}"
        uploads_host = ctx.uploads_volume.rsplit(":", 1)[0]
        return {
            "name": prefix,
            "services": {
                "app": {
                    "image": f"nextcloud:{settings.nextcloud_version}",
                    "container_name": f"{prefix}-app",
                    "environment": [
                        "POSTGRES_HOST=db",
                        "POSTGRES_DB=nextcloud",
                        "POSTGRES_USER=nextcloud",
                        f"POSTGRES_PASSWORD={ctx.db_password}",
                        "REDIS_HOST=redis",
                        f"NEXTCLOUD_ADMIN_USER={DEFAULT_ADMIN_USER}",
                        f"NEXTCLOUD_ADMIN_PASSWORD={ctx.password}",
                        f"NEXTCLOUD_TRUSTED_DOMAINS={host}",
                        "OVERWRITEPROTOCOL=https",
                    ],
                    "volumes": ["./html:/var/www/html", f"{uploads_host}:/var/www/html/data"],
                    "depends_on": ["db", "redis"],
                    "restart": "unless-stopped",
                    "networks": [settings.proxy_network, "internal"],
                    "labels": traefik_labels(ctx.instance_id, self.service_port),
                },
                "db": {
                    "image": "postgres:16-alpine",
                    "container_name": f"{prefix}-db",
                    "environment": [
                        f"POSTGRES_PASSWORD={ctx.db_password}",
                        "POSTGRES_USER=nextcloud",
                        "POSTGRES_DB=nextcloud",
                    ],
                    "volumes": ["./db:/var/lib/postgresql/data"],
                    "restart": "unless-stopped",
                    "networks": ["internal"],
                },
                "redis": {
                    "image": "valkey/valkey:9",
                    "container_name": f"{prefix}-redis",
                    "restart": "unless-stopped",
                    "networks": ["internal"],
                },
            },
            "networks": {settings.proxy_network: {"external": True}, "internal": {}},
        }

    async def bootstrap_admin(
        self, *, base_url: str, instance_id: str, email: str, password: str, storage_gb: int
    ) -> AdminBootstrap:
        # The admin is seeded from the container environment; only quota and email remain.
        record = InstanceMetadata(
            id=instance_id,
            email=email,
            platform="nextcloud",
            plan="",
            storage_gb=storage_gb,
            created=datetime.now(timezone.utc),
            admin_user=DEFAULT_ADMIN_USER,
            initial_password=password,
        )
        if not await self.set_quota(record, storage_gb):
            logger.warning("nextcloud_bootstrap_quota_failed instance_id=%s", instance_id)
        await self._occ(instance_id, ["user:setting", DEFAULT_ADMIN_USER, "settings", "email", email])
        return AdminBootstrap(api_key=None, admin_user=DEFAULT_ADMIN_USER)

    async def _occ(self, instance_id: str, args: list[str]) -> bool:
        engine = get_container_engine()
        try:
            result = await engine.exec(
                f"sphoto-{instance_id}-app",
                ["php", "occ", *args],
                user="www-data",
            )
        except ContainerEngineError as exc:
            logger.warning("nextcloud_occ_failed instance_id=%s error=%s", instance_id, exc)
            return False
        if not result.ok:
            logger.warning(
                "nextcloud_occ_failed instance_id=%s stderr=%s", instance_id, result.stderr.strip()
            )
        return result.ok

    async def _set_quota_via_ocs(self, record: InstanceMetadata, quota_bytes: int) -> bool:
        # Provisioning API fallback; needs the admin password still being the initial one.
        if not record.initial_password:
            return False
        admin = record.admin_user or DEFAULT_ADMIN_USER
        url = f"{instance_url(record.id)}/ocs/v1.php/cloud/users/{admin}"
        try:
            async with tenant_http_client(get_settings().http_timeout_s) as client:
                response = await client.put(
                    url,
                    data={"key": "quota", "value": str(quota_bytes)},
                    headers={"OCS-APIRequest": "true"},
                    auth=(admin, record.initial_password),
                )
        except httpx.HTTPError as exc:
            logger.warning("nextcloud_ocs_quota_failed instance_id=%s error=%s", record.id, exc)
            return False
        return response.is_success

    async def set_quota(self, record: InstanceMetadata, storage_gb: int) -> bool:
        quota_bytes = storage_gb * GIB
        admin = record.admin_user or DEFAULT_ADMIN_USER
        if await self._occ(record.id, ["user:setting", admin, "files", "quota", str(quota_bytes)]):
            return True
        return await self._set_quota_via_ocs(record, quota_bytes)
