from __future__ import annotations

import logging
import re
import secrets
import shutil
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import yaml

from sphoto.core.config import Plan, get_settings
from sphoto.core.errors import (
    ContainerEngineError,
    InstanceExistsError,
    InstanceNotFoundError,
    SPhotoError,
    TenantAppError,
)
from sphoto.domain.models import InstanceMetadata, Platform
from sphoto.persistence.repos.instances import (
    instance_dir,
    instance_exists,
    list_instances as _list_instances,
    load_instance,
    save_instance,
    update_instance,
)
from sphoto.providers.container.factory import get_container_engine
from sphoto.providers.platforms.base import ComposeContext, instance_url
from sphoto.providers.platforms.factory import get_platform
from sphoto.providers.platforms.immich import ImmichPlatform
from sphoto.services.telemetry import increment_counter
from sphoto.services.usage import bytes_to_gb, directory_size_and_count, uploads_path


logger = logging.getLogger(__name__)

_ALPHANUMERIC = string.ascii_letters + string.digits
_BASE36 = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class CreateInstanceResult:
    success: bool
    password: str | None


@dataclass(frozen=True)
class ApiKeyResult:
    success: bool
    message: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(email: str) -> str:
    # Readable prefix from the mailbox name plus a short random suffix.
    local = email.split("@")[0].lower()
    prefix = re.sub(r"[^a-z0-9]", "", local)[:10] or "cloud"
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{suffix}"


def unique_instance_id(email: str, attempts: int = 10) -> str:
    for _ in range(attempts):
        instance_id = generate_id(email)
        if not instance_exists(instance_id):
            return instance_id
    raise InstanceExistsError(instance_id)


def generate_password(length: int = 12) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def _prepare_uploads(instance_id: str) -> tuple[Path, str]:
    # Returns the host directory and the compose volume spec for it.
    path = uploads_path(instance_id)
    path.mkdir(parents=True, exist_ok=True)
    if get_settings().external_storage_path:
        logger.info("instance_external_storage instance_id=%s path=%s", instance_id, path)
        return path, f"{path}:/data"
    return path, "./uploads:/data"


def write_compose_file(directory: Path, compose: dict) -> Path:
    path = directory / "docker-compose.yml"
    path.write_text(yaml.safe_dump(compose, sort_keys=False), encoding="utf-8")
    return path


async def create_instance(
    instance_id: str,
    email: str,
    plan: Plan,
    platform: Platform = "immich",
    *,
    overwrite: bool = False,
) -> CreateInstanceResult:
    """Render, start and bootstrap one tenant deployment.

    Metadata is written before the containers start and is kept even when
    readiness or admin bootstrap fails; the caller reports a manual setup.
    An existing instance directory is never reused unless ``overwrite`` is set.
    """
    if instance_exists(instance_id) and not overwrite:
        raise InstanceExistsError(instance_id)
    logger.info("instance_create_started instance_id=%s platform=%s plan=%s", instance_id, platform, plan.name)
    capability = get_platform(platform)
    directory = instance_dir(instance_id)
    directory.mkdir(parents=True, exist_ok=True)
    _uploads, uploads_volume = _prepare_uploads(instance_id)
    (directory / "db").mkdir(parents=True, exist_ok=True)

    password = generate_password()
    db_password = generate_password(24)
    compose = capability.render_compose(
        ComposeContext(
            instance_id=instance_id,
            email=email,
            password=password,
            db_password=db_password,
            uploads_volume=uploads_volume,
            storage_gb=plan.storage_gb,
        )
    )
    write_compose_file(directory, compose)

    save_instance(
        InstanceMetadata(
            id=instance_id,
            email=email,
            platform=platform,
            plan=plan.name,
            storage_gb=plan.storage_gb,
            status="active",
            created=_utc_now(),
        )
    )

    try:
        await get_container_engine().up(directory)
    except ContainerEngineError:
        logger.exception("instance_compose_up_failed instance_id=%s", instance_id)
        increment_counter("instance_create_failed")
        return CreateInstanceResult(success=False, password=None)
    logger.info("instance_containers_started instance_id=%s", instance_id)

    base_url = instance_url(instance_id)
    if not await capability.wait_until_ready(base_url):
        logger.warning("instance_setup_manual instance_id=%s reason=not_ready", instance_id)
        increment_counter("instance_create_failed")
        return CreateInstanceResult(success=False, password=None)

    try:
        bootstrap = await capability.bootstrap_admin(
            base_url=base_url,
            instance_id=instance_id,
            email=email,
            password=password,
            storage_gb=plan.storage_gb,
        )
    except (SPhotoError, ValueError):
        logger.exception("instance_bootstrap_failed instance_id=%s", instance_id)
        increment_counter("instance_create_failed")
        return CreateInstanceResult(success=False, password=None)

    def _apply(record: InstanceMetadata) -> None:
        record.initial_password = password
        if bootstrap.api_key:
            record.api_key = bootstrap.api_key
        if bootstrap.admin_user:
            record.admin_user = bootstrap.admin_user

    await update_instance(instance_id, _apply)
    increment_counter("instance_created")
    logger.info("instance_create_completed instance_id=%s", instance_id)
    return CreateInstanceResult(success=True, password=password)


async def stop_instance(instance_id: str) -> None:
    if not instance_exists(instance_id):
        return
    await get_container_engine().down(instance_dir(instance_id))

    def _apply(record: InstanceMetadata) -> None:
        record.status = "stopped"
        record.stopped_at = _utc_now()

    await update_instance(instance_id, _apply)
    logger.info("instance_stopped instance_id=%s", instance_id)


async def start_instance(instance_id: str) -> None:
    if not instance_exists(instance_id):
        raise InstanceNotFoundError(instance_id)
    await get_container_engine().up(instance_dir(instance_id))

    def _apply(record: InstanceMetadata) -> None:
        record.status = "active"
        record.stopped_at = None

    await update_instance(instance_id, _apply)
    logger.info("instance_started instance_id=%s", instance_id)


async def delete_instance(instance_id: str) -> None:
    # Volumes, metadata and uploads are all removed; there is no soft delete.
    if not instance_exists(instance_id):
        return
    directory = instance_dir(instance_id)
    await get_container_engine().down(directory, remove_volumes=True)
    external = get_settings().external_storage_path
    shutil.rmtree(directory, ignore_errors=True)
    if external:
        shutil.rmtree(Path(external) / instance_id, ignore_errors=True)
    increment_counter("instance_deleted")
    logger.info("instance_deleted instance_id=%s", instance_id)


def list_instances() -> list[InstanceMetadata]:
    return _list_instances()


def get_instance(instance_id: str) -> InstanceMetadata | None:
    return load_instance(instance_id)


async def generate_api_key(instance_id: str, email: str, password: str) -> ApiKeyResult:
    record = load_instance(instance_id)
    if record is None:
        raise InstanceNotFoundError(instance_id)
    if record.api_key:
        return ApiKeyResult(success=True, message="API key already exists")
    capability = get_platform(record.platform)
    if not isinstance(capability, ImmichPlatform):
        return ApiKeyResult(success=False, message="API keys are only supported for Immich instances")
    try:
        api_key = await capability.generate_api_key(
            base_url=instance_url(instance_id), email=email, password=password
        )
    except TenantAppError as exc:
        logger.warning("instance_api_key_failed instance_id=%s error=%s", instance_id, exc)
        return ApiKeyResult(success=False, message="Login failed")
    if not api_key:
        return ApiKeyResult(success=False, message="API key creation failed")

    def _apply(item: InstanceMetadata) -> None:
        item.api_key = api_key

    await update_instance(instance_id, _apply)
    return ApiKeyResult(success=True, message="API key generated")


async def get_instance_stats(instance_id: str) -> dict:
    record = load_instance(instance_id)
    if record is None:
        raise InstanceNotFoundError(instance_id)
    usage = await directory_size_and_count(uploads_path(instance_id))
    return {
        "instance_id": instance_id,
        "storage_bytes": usage.bytes,
        "storage_gb": bytes_to_gb(usage.bytes),
        "files": usage.files,
        "limit_gb": record.storage_gb,
        "percentage": round(usage.bytes / (record.storage_gb * 1024**3) * 100, 1) if record.storage_gb else 0,
    }
