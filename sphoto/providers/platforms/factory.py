from __future__ import annotations

from sphoto.core.errors import ConfigError
from sphoto.providers.platforms.base import TenantPlatform
from sphoto.providers.platforms.immich import ImmichPlatform
from sphoto.providers.platforms.nextcloud import NextcloudPlatform


_platforms: dict[str, TenantPlatform] = {
    "immich": ImmichPlatform(),
    "nextcloud": NextcloudPlatform(),
}


def get_platform(name: str | None) -> TenantPlatform:
    # Records written before platform selection existed are Immich.
    key = (name or "immich").lower()
    platform = _platforms.get(key)
    if platform is None:
        raise ConfigError(f"Unsupported platform: {key}")
    return platform


def supported_platforms() -> list[str]:
    return sorted(_platforms)
