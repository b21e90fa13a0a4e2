from __future__ import annotations

from pathlib import Path

from sphoto.core.config import get_settings
from sphoto.persistence.store import locked, read_json, write_json


_MAX_EVENTS = 1000


def _events_path() -> Path:
    return get_settings().billing_dir / "processed_events.json"


def _load() -> list[str]:
    payload = read_json(_events_path())
    if not isinstance(payload, list):
        return []
    return [str(item) for item in payload]


def is_event_processed(event_id: str) -> bool:
    return event_id in _load()


async def mark_event_processed(event_id: str) -> None:
    # Keep only the most recent ids; redeliveries arrive within days.
    async with locked("billing_events"):
        events = _load()
        if event_id in events:
            return
        events.append(event_id)
        write_json(_events_path(), events[-_MAX_EVENTS:])
