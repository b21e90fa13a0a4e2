from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sphoto.core.config import get_settings
from sphoto.persistence.repos.instances import load_instance
from sphoto.providers.billing.fake import fake_subscription
from sphoto.services import plans
from sphoto.tests.utils.factories import fake_billing, fake_email, make_instance, write_upload


@pytest.mark.asyncio
async def test_upgrade_moves_to_next_plan_and_notifies() -> None:
    make_instance("anna-ab12")
    result = await plans.upgrade_plan("anna-ab12")
    assert result.success is True
    assert result.new_plan == "Pro"
    record = load_instance("anna-ab12")
    assert record is not None
    assert record.plan == "Pro"
    assert record.storage_gb == 1000
    assert "🚀 SPhoto: Upgrade erfolgreich!" in fake_email().subjects()


@pytest.mark.asyncio
async def test_upgrade_on_top_plan_is_a_business_block() -> None:
    make_instance("anna-ab12", plan="Pro", storage_gb=1000)
    result = await plans.upgrade_plan("anna-ab12")
    assert result.success is False
    assert result.message == "Already on Pro plan"
    assert fake_email().sent == []


@pytest.mark.asyncio
async def test_upgrade_with_subscription_prorates_immediately() -> None:
    make_instance("anna-ab12")
    billing = fake_billing()
    billing.subscriptions["sub_1"] = fake_subscription("sub_1", "price_basic", 1_900_000_000)
    result = await plans.upgrade_plan("anna-ab12", "sub_1")
    assert result.success is True
    assert billing.price_changes == [("sub_1", "price_pro", "create_prorations")]


@pytest.mark.asyncio
async def test_billing_failure_leaves_plan_untouched() -> None:
    make_instance("anna-ab12")
    billing = fake_billing()
    billing.subscriptions["sub_1"] = fake_subscription("sub_1", "price_basic", 1_900_000_000)
    billing.fail_price_change = True
    result = await plans.upgrade_plan("anna-ab12", "sub_1")
    assert result.success is False
    assert result.message.startswith("Billing update failed")
    record = load_instance("anna-ab12")
    assert record is not None and record.plan == "Basic"


@pytest.mark.asyncio
async def test_downgrade_blocked_on_smallest_plan() -> None:
    make_instance("anna-ab12")
    check = await plans.check_downgrade_possible("anna-ab12")
    assert check.possible is False
    assert check.reason == "Bereits im kleinsten Plan."
    result = await plans.downgrade_plan("anna-ab12")
    assert result.success is False


@pytest.mark.asyncio
async def test_downgrade_blocked_when_usage_exceeds_lower_quota(monkeypatch) -> None:
    monkeypatch.setenv("PLAN_BASIC_STORAGE_GB", "0")
    get_settings.cache_clear()
    make_instance("anna-ab12", plan="Pro", storage_gb=1000)
    write_upload("anna-ab12", "a.jpg", 2048)
    check = await plans.check_downgrade_possible("anna-ab12")
    assert check.possible is False
    assert check.target_plan == "Basic"
    assert "Basic Limit: 0 GB" in (check.reason or "")

    billing = fake_billing()
    billing.subscriptions["sub_1"] = fake_subscription("sub_1", "price_pro", 1_900_000_000)
    result = await plans.downgrade_plan("anna-ab12", "sub_1")

    assert result.success is False
    assert result.message == check.reason
    assert billing.price_changes == []
    assert fake_email().sent == []
    record = load_instance("anna-ab12")
    assert record is not None
    assert (record.plan, record.storage_gb) == ("Pro", 1000)
    assert record.pending_plan is None and record.plan_effective_at is None


@pytest.mark.asyncio
async def test_downgrade_without_subscription_applies_immediately() -> None:
    make_instance("anna-ab12", plan="Pro", storage_gb=1000)
    before = datetime.now(timezone.utc)

    result = await plans.downgrade_plan("anna-ab12")

    assert result.success is True
    assert result.message == "Downgrade successful"
    assert result.new_plan == "Basic"
    assert result.effective_at is not None
    assert before <= result.effective_at <= datetime.now(timezone.utc)
    record = load_instance("anna-ab12")
    assert record is not None
    assert (record.plan, record.storage_gb) == ("Basic", 200)
    assert record.pending_plan is None
    assert fake_billing().price_changes == []
    assert "📦 SPhoto: Plan-Änderung bestätigt" in fake_email().subjects()


@pytest.mark.asyncio
async def test_downgrade_with_subscription_is_deferred_to_period_end() -> None:
    make_instance("anna-ab12", plan="Pro", storage_gb=1000)
    period_end = int((datetime.now(timezone.utc) + timedelta(days=10)).timestamp())
    billing = fake_billing()
    billing.subscriptions["sub_1"] = fake_subscription("sub_1", "price_pro", period_end)

    result = await plans.downgrade_plan("anna-ab12", "sub_1")

    assert result.success is True
    assert result.message == "Downgrade scheduled"
    assert billing.price_changes == [("sub_1", "price_basic", "none")]
    record = load_instance("anna-ab12")
    assert record is not None
    assert record.plan == "Pro"
    assert record.pending_plan == "Basic"
    assert record.plan_effective_at == datetime.fromtimestamp(period_end, tz=timezone.utc)


@pytest.mark.asyncio
async def test_reconcile_applies_due_downgrades_only() -> None:
    now = datetime.now(timezone.utc)
    make_instance(
        "due-0001",
        plan="Pro",
        storage_gb=1000,
        pending_plan="Basic",
        pending_storage_gb=200,
        plan_effective_at=now - timedelta(hours=1),
    )
    make_instance(
        "later-001",
        plan="Pro",
        storage_gb=1000,
        pending_plan="Basic",
        pending_storage_gb=200,
        plan_effective_at=now + timedelta(days=3),
    )
    applied = await plans.reconcile_pending_downgrades(now)
    assert applied == ["due-0001"]
    due = load_instance("due-0001")
    later = load_instance("later-001")
    assert due is not None and due.plan == "Basic" and due.pending_plan is None
    assert later is not None and later.plan == "Pro"


@pytest.mark.asyncio
async def test_plan_change_from_subscription_price() -> None:
    make_instance("anna-ab12")
    assert await plans.handle_plan_change("anna-ab12", "price_pro") is True
    assert await plans.handle_plan_change("anna-ab12", "price_unknown") is False
    record = load_instance("anna-ab12")
    assert record is not None and record.storage_gb == 1000


@pytest.mark.asyncio
async def test_plan_info_reports_usage_and_options() -> None:
    make_instance("anna-ab12")
    write_upload("anna-ab12", "one.jpg", 1024)
    info = await plans.get_plan_info("anna-ab12")
    assert info.plan == "Basic"
    assert info.used_bytes == 1024
    assert info.can_upgrade is True
    assert info.can_downgrade is False
