from __future__ import annotations

from pathlib import Path

from sphoto.core.config import get_settings
from sphoto.domain.models import HealthState
from sphoto.persistence.store import read_model, write_model


HEALTH_LOCK_KEY = "health"


def _health_path() -> Path:
    return get_settings().health_dir / "health.json"


def load_health_state() -> HealthState:
    return read_model(_health_path(), HealthState) or HealthState()


def save_health_state(state: HealthState) -> None:
    write_model(_health_path(), state)
