from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest

from sphoto.core.errors import SharedUserNotFoundError, TenantAppError, ValidationFailedError
from sphoto.persistence.repos.shared_users import load_shared_user
from sphoto.services import shared_users
from sphoto.tests.utils.factories import fake_email, make_shared_user, mock_tenant_http, utc_now


def _pool_handler(request: httpx.Request) -> httpx.Response:
    # Both pooled containers answer the admin API; new users get an id per host.
    host = request.url.host
    path = request.url.path
    if request.method == "POST" and path == "/api/admin/users":
        return httpx.Response(201, json={"id": f"{host.split('-')[1]}-user"})
    if path == "/api/server/statistics":
        return httpx.Response(200, json={"photos": 10, "videos": 2, "usage": 1024**3, "usageByUser": [{}, {}]})
    if path.startswith("/api/admin/users/") and path.endswith("/statistics"):
        return httpx.Response(200, json={"usage": 2 * 1024**3, "images": 120, "videos": 4})
    if path == "/api/server/ping":
        return httpx.Response(200, json={"res": "pong"})
    return httpx.Response(200)


@pytest.mark.asyncio
async def test_create_free_user_on_free_container() -> None:
    requests = mock_tenant_http(_pool_handler)

    created = await shared_users.create_shared_user("Lena.Meier@example.com", "free")

    assert created.user.instance == "free"
    assert created.user.quota_gb == 5
    assert created.user.app_user_id == "free-user"
    assert created.user.visible_id.startswith("lenameier-")
    assert len(created.password) == 12
    body = json.loads(requests[0].content)
    assert requests[0].url.host == "sphoto-free-server"
    assert body["quotaSizeInBytes"] == 5 * 1024**3
    assert body["shouldChangePassword"] is True
    assert load_shared_user(created.user.visible_id) == created.user


@pytest.mark.asyncio
async def test_paid_tier_uses_plan_storage() -> None:
    mock_tenant_http(_pool_handler)
    created = await shared_users.create_shared_user("max@example.com", "pro", 1000)
    assert created.user.instance == "paid"
    assert created.user.quota_gb == 1000


@pytest.mark.asyncio
async def test_create_fails_when_container_rejects() -> None:
    mock_tenant_http(lambda request: httpx.Response(400, json={"message": "email taken"}))
    with pytest.raises(TenantAppError):
        await shared_users.create_shared_user("lena@example.com", "free")
    assert shared_users.list_shared_users() == []


@pytest.mark.asyncio
async def test_upgrade_migrates_to_paid_container() -> None:
    make_shared_user("lena-x1y2", tier="free")
    requests = mock_tenant_http(_pool_handler)

    outcome = await shared_users.migrate_user_between_instances("lena-x1y2", "basic", 200)

    assert outcome.migrated is True
    assert outcome.password is not None
    assert (outcome.old_instance, outcome.new_instance) == ("free", "paid")
    assert outcome.user.app_user_id == "paid-user"
    assert outcome.user.quota_gb == 200
    calls = [(request.method, request.url.host) for request in requests]
    assert calls == [("POST", "sphoto-paid-server"), ("DELETE", "sphoto-free-server")]
    assert json.loads(requests[1].content) == {"force": True}


@pytest.mark.asyncio
async def test_same_container_tier_change_only_updates_quota() -> None:
    make_shared_user("lena-x1y2", tier="basic", quota_gb=200)
    requests = mock_tenant_http(_pool_handler)

    outcome = await shared_users.migrate_user_between_instances("lena-x1y2", "pro", 1000)

    assert outcome.migrated is False
    assert outcome.user.tier == "pro"
    assert outcome.user.quota_gb == 1000
    assert [request.method for request in requests] == ["PUT"]


@pytest.mark.asyncio
async def test_direct_tier_change_refuses_container_switch() -> None:
    make_shared_user("lena-x1y2", tier="free")
    with pytest.raises(ValidationFailedError):
        await shared_users.update_shared_user_tier("lena-x1y2", "pro")


@pytest.mark.asyncio
async def test_unknown_user_raises() -> None:
    with pytest.raises(SharedUserNotFoundError):
        await shared_users.update_shared_user_quota("nobody-0000", 10)


@pytest.mark.asyncio
async def test_stats_report_usage_against_quota() -> None:
    make_shared_user("lena-x1y2", tier="free", quota_gb=5)
    mock_tenant_http(_pool_handler)

    stats = await shared_users.get_shared_user_stats("lena-x1y2")

    assert stats.used_gb == 2.0
    assert stats.percent_used == 40
    assert (stats.photos, stats.videos) == (120, 4)


@pytest.mark.asyncio
async def test_deletion_grace_period_and_sweep() -> None:
    make_shared_user("lena-x1y2")
    mock_tenant_http(_pool_handler)

    scheduled = await shared_users.request_account_deletion("lena-x1y2")
    again = await shared_users.request_account_deletion("lena-x1y2")

    assert scheduled.status == "pending_deletion"
    assert again.deletion_scheduled_for == scheduled.deletion_scheduled_for
    assert scheduled.deletion_scheduled_for - scheduled.deletion_requested_at == timedelta(days=14)
    assert len(fake_email().sent) == 1

    early = await shared_users.process_scheduled_deletions()
    assert early.processed == 0

    sweep = await shared_users.process_scheduled_deletions(utc_now() + timedelta(days=15))
    assert sweep.deleted == ["lena@example.com"]
    assert load_shared_user("lena-x1y2").status == "deleted"
    assert fake_email().subjects()[-1] == "👋 SPhoto: Konto gelöscht"

    with pytest.raises(ValidationFailedError):
        await shared_users.request_account_deletion("lena-x1y2")


@pytest.mark.asyncio
async def test_deletion_sweep_keeps_going_after_errors() -> None:
    past = utc_now() - timedelta(days=1)
    make_shared_user("lena-x1y2", status="pending_deletion", deletion_scheduled_for=past)
    mock_tenant_http(lambda request: httpx.Response(500))

    sweep = await shared_users.process_scheduled_deletions()

    assert sweep.processed == 1
    assert sweep.deleted == []
    assert sweep.errors[0].startswith("lena@example.com:")
    assert load_shared_user("lena-x1y2").status == "pending_deletion"


@pytest.mark.asyncio
async def test_cancel_deletion() -> None:
    make_shared_user("lena-x1y2")
    with pytest.raises(ValidationFailedError):
        await shared_users.cancel_account_deletion("lena-x1y2")
    await shared_users.request_account_deletion("lena-x1y2")
    restored = await shared_users.cancel_account_deletion("lena-x1y2")
    assert restored.status == "active"
    assert restored.deletion_scheduled_for is None


@pytest.mark.asyncio
async def test_portal_tokens() -> None:
    make_shared_user("lena-x1y2")

    session = await shared_users.create_portal_session("lena-x1y2")

    assert len(session.portal_token) == 64
    assert shared_users.validate_portal_token(session.portal_token).visible_id == "lena-x1y2"
    assert shared_users.validate_portal_token("wrong") is None
    assert shared_users.validate_portal_token("") is None

    await shared_users.invalidate_portal_token("lena-x1y2")
    assert shared_users.validate_portal_token(session.portal_token) is None


def test_expired_portal_token_is_rejected() -> None:
    make_shared_user("lena-x1y2", portal_token="t" * 64, portal_token_expires_at=utc_now() - timedelta(minutes=1))
    assert shared_users.validate_portal_token("t" * 64) is None


@pytest.mark.asyncio
async def test_portal_login_mails_link_only_to_known_users() -> None:
    make_shared_user("lena-x1y2")

    assert await shared_users.send_portal_login("LENA@example.com") is True
    assert await shared_users.send_portal_login("nobody@example.com") is False

    token = load_shared_user("lena-x1y2").portal_token
    assert len(fake_email().sent) == 1
    assert f"https://sphoto.test/portal?token={token}" in fake_email().sent[0].html


@pytest.mark.asyncio
async def test_portal_data_survives_unreachable_container() -> None:
    make_shared_user("lena-x1y2", tier="basic", quota_gb=200)
    mock_tenant_http(lambda request: httpx.Response(503))

    data = await shared_users.get_portal_data("lena-x1y2")

    assert data["plan"] == "Basic"
    assert data["used_gb"] == 0
    assert data["instance"] == "paid"
    assert data["can_request_export"] is True


@pytest.mark.asyncio
async def test_shared_instance_health_and_stats() -> None:
    mock_tenant_http(_pool_handler)
    healthy = await shared_users.check_shared_instance_health("free")
    stats = await shared_users.get_shared_instance_stats("paid")
    assert healthy["healthy"] is True
    assert stats["users"] == 2
    assert stats["usage_gb"] == 1.0

    mock_tenant_http(lambda request: httpx.Response(502))
    down = await shared_users.check_shared_instance_health("free")
    assert down["healthy"] is False
