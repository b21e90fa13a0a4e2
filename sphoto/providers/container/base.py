from __future__ import annotations

from pathlib import Path
from typing import Protocol

from sphoto.providers.shell import CommandResult


class ContainerEngine(Protocol):
    async def up(self, project_dir: Path) -> None:
        ...

    async def down(self, project_dir: Path, *, remove_volumes: bool = False) -> None:
        ...

    async def exec(self, container: str, args: list[str], *, user: str | None = None) -> CommandResult:
        ...
