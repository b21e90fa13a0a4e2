from __future__ import annotations

from pathlib import Path
from typing import Callable

from sphoto.core.config import get_settings
from sphoto.domain.models import InstanceMetadata
from sphoto.persistence.store import locked, read_model, write_model


def instance_dir(instance_id: str) -> Path:
    return get_settings().instances_dir / instance_id


def metadata_path(instance_id: str) -> Path:
    return instance_dir(instance_id) / "metadata.json"


def instance_exists(instance_id: str) -> bool:
    return instance_dir(instance_id).is_dir()


def load_instance(instance_id: str) -> InstanceMetadata | None:
    return read_model(metadata_path(instance_id), InstanceMetadata)


def save_instance(record: InstanceMetadata) -> None:
    write_model(metadata_path(record.id), record)


def list_instance_ids() -> list[str]:
    root = get_settings().instances_dir
    if not root.is_dir():
        return []
    return sorted(entry.name for entry in root.iterdir() if entry.is_dir())


def list_instances() -> list[InstanceMetadata]:
    # Directories without readable metadata are skipped.
    records: list[InstanceMetadata] = []
    for instance_id in list_instance_ids():
        record = load_instance(instance_id)
        if record is not None:
            records.append(record)
    return records


async def update_instance(
    instance_id: str, mutate: Callable[[InstanceMetadata], None]
) -> InstanceMetadata | None:
    # Serialize read-modify-write per instance so concurrent updates are not lost.
    async with locked(f"instance:{instance_id}"):
        record = load_instance(instance_id)
        if record is None:
            return None
        mutate(record)
        save_instance(record)
        return record
