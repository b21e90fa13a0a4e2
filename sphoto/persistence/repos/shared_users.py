from __future__ import annotations

from pathlib import Path
from typing import Callable

from sphoto.core.config import get_settings
from sphoto.domain.models import SharedUser
from sphoto.persistence.store import locked, read_model, write_model


def _user_path(visible_id: str) -> Path:
    return get_settings().shared_users_dir / f"{visible_id}.json"


def load_shared_user(visible_id: str) -> SharedUser | None:
    return read_model(_user_path(visible_id), SharedUser)


def save_shared_user(user: SharedUser) -> None:
    write_model(_user_path(user.visible_id), user)


def list_shared_users() -> list[SharedUser]:
    root = get_settings().shared_users_dir
    if not root.is_dir():
        return []
    users: list[SharedUser] = []
    for path in sorted(root.glob("*.json")):
        user = read_model(path, SharedUser)
        if user is not None:
            users.append(user)
    return users


async def update_shared_user(
    visible_id: str, mutate: Callable[[SharedUser], None]
) -> SharedUser | None:
    async with locked(f"shared_user:{visible_id}"):
        user = load_shared_user(visible_id)
        if user is None:
            return None
        mutate(user)
        save_shared_user(user)
        return user
