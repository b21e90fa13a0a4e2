from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, TypeVar

from pydantic import BaseModel, ValidationError


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_locks: dict[str, asyncio.Lock] = {}


def key_lock(key: str) -> asyncio.Lock:
    # One lock per record key serializes read-modify-write cycles in this process.
    lock = _locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[key] = lock
    return lock


@asynccontextmanager
async def locked(key: str) -> AsyncIterator[None]:
    async with key_lock(key):
        yield


def reset_locks() -> None:
    # Drop locks between event loops in tests.
    _locks.clear()


def read_json(path: Path) -> Any | None:
    # Missing and unparsable files both read as absent.
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("store_corrupt_json path=%s", path)
        return None


def write_json(path: Path, payload: Any) -> None:
    # Write to a sibling temp file and rename so readers never see partial JSON.
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_model(path: Path, model: type[ModelT]) -> ModelT | None:
    payload = read_json(path)
    if payload is None:
        return None
    try:
        return model.model_validate(payload)
    except ValidationError:
        logger.warning("store_invalid_record path=%s model=%s", path, model.__name__)
        return None


def write_model(path: Path, record: BaseModel) -> None:
    write_json(path, record.model_dump(mode="json"))
