from __future__ import annotations

import asyncio
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from sphoto.core.config import get_settings
from sphoto.persistence.repos.instances import instance_dir, load_instance
from sphoto.providers.platforms.base import GIB


@dataclass(frozen=True)
class DirectoryUsage:
    bytes: int
    files: int


@dataclass(frozen=True)
class StorageUsage:
    used_bytes: int
    limit_bytes: int
    percentage: int


def uploads_path(instance_id: str) -> Path:
    # External storage wins when configured; otherwise uploads sit next to the metadata.
    external = get_settings().external_storage_path
    if external:
        return Path(external) / instance_id / "uploads"
    return instance_dir(instance_id) / "uploads"


def _walk(path: Path) -> DirectoryUsage:
    total = 0
    files = 0
    for root, _dirs, names in os.walk(path, onerror=lambda _exc: None):
        for name in names:
            try:
                info = os.lstat(os.path.join(root, name))
            except OSError:
                continue
            if not stat.S_ISREG(info.st_mode):
                continue
            total += info.st_size
            files += 1
    return DirectoryUsage(bytes=total, files=files)


async def directory_size_and_count(path: Path) -> DirectoryUsage:
    # Tree walks on large volumes are slow; keep them off the event loop.
    if not path.is_dir():
        return DirectoryUsage(bytes=0, files=0)
    return await asyncio.to_thread(_walk, path)


async def get_storage_usage(instance_id: str) -> StorageUsage | None:
    record = load_instance(instance_id)
    if record is None:
        return None
    usage = await directory_size_and_count(uploads_path(instance_id))
    limit = record.storage_gb * GIB
    percentage = round(usage.bytes / limit * 100) if limit else 0
    return StorageUsage(used_bytes=usage.bytes, limit_bytes=limit, percentage=percentage)


def bytes_to_gb(value: int) -> float:
    return round(value / GIB, 1)
