from __future__ import annotations

from sphoto.core.config import get_settings
from sphoto.core.errors import ConfigError
from sphoto.providers.container.base import ContainerEngine
from sphoto.providers.container.compose import DockerComposeEngine
from sphoto.providers.container.fake import FakeContainerEngine


_override: ContainerEngine | None = None
_fake: FakeContainerEngine | None = None


def get_container_engine() -> ContainerEngine:
    global _fake
    if _override is not None:
        return _override
    engine = (get_settings().container_engine or "docker").lower()
    if engine == "docker":
        return DockerComposeEngine()
    if engine == "fake":
        # Keep one fake per process so tests can inspect recorded calls.
        if _fake is None:
            _fake = FakeContainerEngine()
        return _fake
    raise ConfigError(f"Unsupported container engine: {engine}")


def set_container_engine(engine: ContainerEngine | None) -> None:
    global _override, _fake
    _override = engine
    _fake = None
