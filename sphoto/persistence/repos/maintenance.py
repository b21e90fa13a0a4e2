from __future__ import annotations

from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from sphoto.core.config import get_settings
from sphoto.domain.models import Maintenance
from sphoto.persistence.store import read_json, write_json


MAINTENANCE_LOCK_KEY = "maintenance"

_adapter = TypeAdapter(list[Maintenance])


def _maintenance_path() -> Path:
    return get_settings().maintenance_dir / "maintenance.json"


def load_maintenances() -> list[Maintenance]:
    payload = read_json(_maintenance_path())
    if payload is None:
        return []
    try:
        return _adapter.validate_python(payload)
    except ValidationError:
        return []


def save_maintenances(items: list[Maintenance]) -> None:
    write_json(_maintenance_path(), _adapter.dump_python(items, mode="json"))
