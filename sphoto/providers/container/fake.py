from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from sphoto.core.errors import ContainerEngineError
from sphoto.providers.shell import CommandResult


@dataclass
class FakeContainerEngine:
    # Records calls instead of touching a container runtime.
    calls: list[tuple[str, str]] = field(default_factory=list)
    fail_up: bool = False
    exec_result: CommandResult = field(default_factory=lambda: CommandResult(0, "", ""))

    async def up(self, project_dir: Path) -> None:
        self.calls.append(("up", str(project_dir)))
        if self.fail_up:
            raise ContainerEngineError("compose up failed: fake failure")

    async def down(self, project_dir: Path, *, remove_volumes: bool = False) -> None:
        self.calls.append(("down -v" if remove_volumes else "down", str(project_dir)))

    async def exec(self, container: str, args: list[str], *, user: str | None = None) -> CommandResult:
        self.calls.append(("exec", f"{container} {' '.join(args)}"))
        return self.exec_result
