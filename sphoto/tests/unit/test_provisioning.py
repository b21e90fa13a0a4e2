from __future__ import annotations

import pytest
import yaml

from sphoto.core.config import get_settings, plan_for_key
from sphoto.core.errors import InstanceNotFoundError
from sphoto.persistence.repos.instances import instance_dir, load_instance
from sphoto.providers.platforms import base as platform_base
from sphoto.services import provisioning
from sphoto.tests.utils.factories import (
    always,
    fake_engine,
    immich_handler,
    make_instance,
    mock_tenant_http,
    write_upload,
)


def _basic():
    plan = plan_for_key("basic")
    assert plan is not None
    return plan


def test_generated_id_uses_mailbox_prefix() -> None:
    instance_id = provisioning.generate_id("Anna.Muster+photos@example.com")
    prefix, suffix = instance_id.rsplit("-", 1)
    assert prefix == "annamuster"
    assert len(suffix) == 4


@pytest.mark.asyncio
async def test_create_instance_bootstraps_admin_and_api_key(monkeypatch) -> None:
    monkeypatch.setenv("IMMICH_READY_ATTEMPTS", "2")
    get_settings.cache_clear()
    seen = mock_tenant_http(immich_handler())

    result = await provisioning.create_instance("anna-ab12", "anna@example.com", _basic(), "immich")

    assert result.success is True
    assert result.password is not None and len(result.password) == 12
    record = load_instance("anna-ab12")
    assert record is not None
    assert record.plan == "Basic"
    assert record.storage_gb == 200
    assert record.api_key == "key-secret"
    assert record.initial_password == result.password
    assert ("up", str(instance_dir("anna-ab12"))) in fake_engine().calls
    compose = yaml.safe_load((instance_dir("anna-ab12") / "docker-compose.yml").read_text())
    assert compose["services"]["server"]["container_name"] == "sphoto-anna-ab12-server"
    assert any(request.url.path == "/api/auth/admin-sign-up" for request in seen)


@pytest.mark.asyncio
async def test_unready_instance_keeps_metadata_for_manual_setup(monkeypatch) -> None:
    monkeypatch.setenv("IMMICH_READY_ATTEMPTS", "2")
    get_settings.cache_clear()
    mock_tenant_http(immich_handler(ready=False))

    result = await provisioning.create_instance("anna-ab12", "anna@example.com", _basic(), "immich")

    assert result.success is False
    assert result.password is None
    record = load_instance("anna-ab12")
    assert record is not None
    assert record.status == "active"
    assert record.api_key is None


def _record_sleeps(monkeypatch) -> list[float]:
    # Default poll spacing, without actually waiting.
    monkeypatch.delenv("READY_POLL_INTERVAL_S", raising=False)
    get_settings.cache_clear()
    sleeps: list[float] = []

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    monkeypatch.setattr(platform_base.asyncio, "sleep", _sleep)
    return sleeps


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("platform", "ping_path", "attempts", "handler"),
    [
        ("immich", "/api/server/ping", 30, immich_handler(ready=False)),
        ("nextcloud", "/status.php", 45, always(503)),
    ],
)
async def test_readiness_budget_uses_default_attempts_and_spacing(
    monkeypatch, platform, ping_path, attempts, handler
) -> None:
    sleeps = _record_sleeps(monkeypatch)
    seen = mock_tenant_http(handler)

    result = await provisioning.create_instance("anna-ab12", "anna@example.com", _basic(), platform)

    assert result == provisioning.CreateInstanceResult(success=False, password=None)
    assert sum(1 for request in seen if request.url.path == ping_path) == attempts
    assert sleeps == [2.0] * attempts


@pytest.mark.asyncio
async def test_compose_failure_reports_unsuccessful_create() -> None:
    fake_engine().fail_up = True
    result = await provisioning.create_instance("anna-ab12", "anna@example.com", _basic(), "immich")
    assert result.success is False
    assert load_instance("anna-ab12") is not None


@pytest.mark.asyncio
async def test_stop_and_start_toggle_status() -> None:
    make_instance("anna-ab12")
    await provisioning.stop_instance("anna-ab12")
    stopped = load_instance("anna-ab12")
    assert stopped is not None and stopped.status == "stopped" and stopped.stopped_at is not None

    await provisioning.start_instance("anna-ab12")
    started = load_instance("anna-ab12")
    assert started is not None and started.status == "active" and started.stopped_at is None


@pytest.mark.asyncio
async def test_start_unknown_instance_raises() -> None:
    with pytest.raises(InstanceNotFoundError):
        await provisioning.start_instance("missing-1")


@pytest.mark.asyncio
async def test_delete_removes_directory_and_volumes() -> None:
    make_instance("anna-ab12")
    await provisioning.delete_instance("anna-ab12")
    assert not instance_dir("anna-ab12").exists()
    assert ("down -v", str(instance_dir("anna-ab12"))) in fake_engine().calls


@pytest.mark.asyncio
async def test_stats_report_usage_against_quota() -> None:
    make_instance("anna-ab12", storage_gb=1)
    write_upload("anna-ab12", "2024/a.jpg", 1024)
    write_upload("anna-ab12", "2024/b.jpg", 2048)
    stats = await provisioning.get_instance_stats("anna-ab12")
    assert stats["files"] == 2
    assert stats["storage_bytes"] == 3072
    assert stats["limit_gb"] == 1
