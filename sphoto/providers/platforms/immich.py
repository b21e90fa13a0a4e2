from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from sphoto.core.config import get_settings
from sphoto.core.errors import TenantAppError
from sphoto.domain.models import InstanceMetadata
from sphoto.providers.http import tenant_http_client
from sphoto.providers.platforms.base import (
    GIB,
    AdminBootstrap,
    ComposeContext,
    HttpPlatformMixin,
    instance_url,
    traefik_labels,
)
from sphoto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

API_KEY_NAME = "SPhoto Admin Stats"


class ImmichPlatform(HttpPlatformMixin):
    name = "immich"
    liveness_path = "/api/server/ping"
    service_port = 2283

    @property
    def ready_attempts(self) -> int:
        return get_settings().immich_ready_attempts

    def render_compose(self, ctx: ComposeContext) -> dict[str, Any]:
        settings = get_settings()
        prefix = f"sphoto-{ctx.instance_id}"
        return {
            "name": prefix,
            "services": {
                "server": {
                    "image": f"ghcr.io/immich-app/immich-server:{settings.immich_version}",
                    "container_name": f"{prefix}-server",
                    "environment": [
                        f"DB_URL=postgresql://sphoto:{ctx.db_password}@db:5432/sphoto",
                        "REDIS_HOSTNAME=redis",
                        f"MACHINE_LEARNING_URL={settings.ml_url}",
                    ],
                    "volumes": [ctx.uploads_volume],
                    "depends_on": ["db", "redis"],
                    "restart": "unless-stopped",
                    "networks": [settings.proxy_network, "internal"],
                    "labels": traefik_labels(ctx.instance_id, self.service_port),
                },
                "db": {
                    "image": "ghcr.io/immich-app/postgres:14-vectorchord0.4.3-pgvectors0.2.0",
                    "container_name": f"{prefix}-db",
                    "environment": [
                        f"POSTGRES_PASSWORD={ctx.db_password}",
                        "POSTGRES_USER=sphoto",
                        "POSTGRES_DB=sphoto",
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

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        start = time.monotonic()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            record_external_call(
                integration="tenant_app",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise TenantAppError(f"{method} {url} failed: {exc}") from exc
        record_external_call(
            integration="tenant_app",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=response.is_success,
        )
        return response

    async def _login(self, client: httpx.AsyncClient, base_url: str, email: str, password: str) -> str:
        response = await self._request(
            client,
            "POST",
            f"{base_url}/api/auth/login",
            json={"email": email, "password": password},
        )
        if not response.is_success:
            raise TenantAppError(f"Immich login failed with HTTP {response.status_code}")
        token = response.json().get("accessToken")
        if not token:
            raise TenantAppError("Immich login returned no access token")
        return token

    async def _create_api_key(self, client: httpx.AsyncClient, base_url: str, token: str) -> str | None:
        response = await self._request(
            client,
            "POST",
            f"{base_url}/api/api-keys",
            json={"name": API_KEY_NAME},
            headers={"Authorization": f"Bearer {token}"},
        )
        if not response.is_success:
            logger.warning("immich_api_key_failed url=%s status=%s", base_url, response.status_code)
            return None
        return response.json().get("secret")

    async def bootstrap_admin(
        self, *, base_url: str, instance_id: str, email: str, password: str, storage_gb: int
    ) -> AdminBootstrap:
        # First sign-up becomes the admin; the customer must change the generated password.
        timeout = get_settings().http_timeout_s
        async with tenant_http_client(timeout) as client:
            signup = await self._request(
                client,
                "POST",
                f"{base_url}/api/auth/admin-sign-up",
                json={"email": email, "password": password, "name": email.split("@")[0]},
            )
            if not signup.is_success:
                raise TenantAppError(f"Immich admin sign-up failed: {signup.text[:200]}")
            admin_id = signup.json().get("id")
            token = await self._login(client, base_url, email, password)
            if admin_id:
                update = await self._request(
                    client,
                    "PUT",
                    f"{base_url}/api/admin/users/{admin_id}",
                    json={"quotaSizeInBytes": storage_gb * GIB, "shouldChangePassword": True},
                    headers={"Authorization": f"Bearer {token}"},
                )
                if not update.is_success:
                    logger.warning(
                        "immich_admin_update_failed instance_id=%s status=%s",
                        instance_id,
                        update.status_code,
                    )
            api_key = await self._create_api_key(client, base_url, token)
        return AdminBootstrap(api_key=api_key, admin_user=email)

    async def generate_api_key(self, *, base_url: str, email: str, password: str) -> str | None:
        async with tenant_http_client(get_settings().http_timeout_s) as client:
            token = await self._login(client, base_url, email, password)
            return await self._create_api_key(client, base_url, token)

    async def set_quota(self, record: InstanceMetadata, storage_gb: int) -> bool:
        # Quota lives on the admin user; look it up with the stored API key.
        if not record.api_key:
            logger.warning("immich_quota_skipped instance_id=%s reason=no_api_key", record.id)
            return False
        base_url = instance_url(record.id)
        headers = {"x-api-key": record.api_key}
        try:
            async with tenant_http_client(get_settings().http_timeout_s) as client:
                users = await self._request(client, "GET", f"{base_url}/api/admin/users", headers=headers)
                if not users.is_success:
                    return False
                admin = next((user for user in users.json() if user.get("isAdmin")), None)
                if admin is None:
                    return False
                update = await self._request(
                    client,
                    "PUT",
                    f"{base_url}/api/admin/users/{admin['id']}",
                    json={"quotaSizeInBytes": storage_gb * GIB},
                    headers=headers,
                )
                return update.is_success
        except TenantAppError as exc:
            logger.warning("immich_quota_failed instance_id=%s error=%s", record.id, exc)
            return False
