from __future__ import annotations

import json

import pytest

from sphoto.core.config import get_settings, plan_for_key
from sphoto.core.errors import InstanceExistsError, WebhookSignatureError
from sphoto.persistence.repos.instances import instance_dir, load_instance
from sphoto.persistence.sessions import get_session_store
from sphoto.providers.billing.fake import FAKE_SIGNATURE, fake_subscription
from sphoto.services import billing, provisioning
from sphoto.tests.utils.factories import (
    fake_billing,
    fake_email,
    fake_engine,
    immich_handler,
    make_instance,
    make_shared_user,
    mock_tenant_http,
)


def _checkout_event(event_id: str = "evt_1", **session) -> dict:
    payload = {
        "id": "cs_1",
        "mode": "subscription",
        "customer": "cus_1",
        "subscription": "sub_1",
        "customer_details": {"email": "anna@example.com"},
        "metadata": {"subdomain": "anna", "platform": "immich"},
    }
    payload.update(session)
    return {"id": event_id, "type": "checkout.session.completed", "data": {"object": payload}}


def test_verify_event_rejects_bad_signature() -> None:
    with pytest.raises(WebhookSignatureError):
        billing.verify_event(b"{}", "wrong")


def test_verify_event_returns_payload() -> None:
    event = billing.verify_event(json.dumps({"id": "evt_9", "type": "ping"}).encode(), FAKE_SIGNATURE)
    assert event["id"] == "evt_9"


@pytest.mark.asyncio
async def test_checkout_completed_provisions_instance(monkeypatch) -> None:
    monkeypatch.setenv("IMMICH_READY_ATTEMPTS", "1")
    get_settings.cache_clear()
    mock_tenant_http(immich_handler())
    gateway = fake_billing()
    gateway.subscriptions["sub_1"] = fake_subscription("sub_1", "price_pro", 1_900_000_000)

    handled = await billing.handle_event(_checkout_event())

    assert handled is True
    record = load_instance("anna")
    assert record is not None
    assert record.plan == "Pro"
    assert record.stripe_customer_id == "cus_1"
    assert record.stripe_subscription_id == "sub_1"
    assert gateway.customers["cus_1"]["metadata"]["sphoto_id"] == "anna"
    status = get_session_store().get("cs_1")
    assert status is not None
    assert status.status == "complete"
    assert status.instance_url == "https://anna.sphoto.test"
    assert status.auto_setup is True
    assert "🎉 Deine SPhoto Cloud ist bereit!" in fake_email().subjects()


@pytest.mark.asyncio
async def test_checkout_for_claimed_subdomain_keeps_existing_tenant(monkeypatch) -> None:
    monkeypatch.setenv("IMMICH_READY_ATTEMPTS", "1")
    get_settings.cache_clear()
    mock_tenant_http(immich_handler())
    fake_billing().subscriptions["sub_1"] = fake_subscription("sub_1", "price_basic", 1_900_000_000)
    make_instance("anna", email="owner@example.com", stripe_customer_id="cus_owner")
    metadata_before = (instance_dir("anna") / "metadata.json").read_text()

    event = _checkout_event(customer_details={"email": "intruder@example.com"})
    assert await billing.handle_event(event) is True

    original = load_instance("anna")
    assert original is not None
    assert original.email == "owner@example.com"
    assert original.stripe_customer_id == "cus_owner"
    assert (instance_dir("anna") / "metadata.json").read_text() == metadata_before
    status = get_session_store().get("cs_1")
    assert status is not None and status.status == "complete"
    assert status.instance_id is not None and status.instance_id.startswith("intruder-")
    created = load_instance(status.instance_id)
    assert created is not None and created.email == "intruder@example.com"


@pytest.mark.asyncio
async def test_create_instance_refuses_existing_directory() -> None:
    make_instance("anna", email="owner@example.com")
    plan = plan_for_key("basic")
    assert plan is not None

    with pytest.raises(InstanceExistsError):
        await provisioning.create_instance("anna", "intruder@example.com", plan)

    record = load_instance("anna")
    assert record is not None and record.email == "owner@example.com"
    assert fake_engine().calls == []


@pytest.mark.asyncio
async def test_redelivered_event_is_not_processed_twice(monkeypatch) -> None:
    monkeypatch.setenv("IMMICH_READY_ATTEMPTS", "1")
    get_settings.cache_clear()
    mock_tenant_http(immich_handler())
    fake_billing().subscriptions["sub_1"] = fake_subscription("sub_1", "price_basic", 1_900_000_000)

    assert await billing.handle_event(_checkout_event()) is True
    assert await billing.handle_event(_checkout_event()) is False
    ups = [call for call in fake_engine().calls if call[0] == "up"]
    assert len(ups) == 1


@pytest.mark.asyncio
async def test_checkout_with_unknown_price_reports_error() -> None:
    fake_billing().subscriptions["sub_1"] = fake_subscription("sub_1", "price_other", 1_900_000_000)
    await billing.handle_event(_checkout_event())
    status = get_session_store().get("cs_1")
    assert status is not None
    assert status.status == "error"
    assert status.message == billing.MSG_UNKNOWN_PLAN
    assert load_instance("anna") is None


@pytest.mark.asyncio
async def test_checkout_without_email_reports_error() -> None:
    await billing.handle_event(_checkout_event(customer=None, customer_details={}))
    status = get_session_store().get("cs_1")
    assert status is not None
    assert status.message == billing.MSG_MISSING_EMAIL


@pytest.mark.asyncio
async def test_payment_failed_pauses_instance_and_emails_customer() -> None:
    make_instance("anna-ab12", stripe_customer_id="cus_1")
    fake_billing().customers["cus_1"] = {"id": "cus_1", "email": "anna@example.com", "metadata": {}}

    event = {"id": "evt_2", "type": "invoice.payment_failed", "data": {"object": {"customer": "cus_1"}}}
    assert await billing.handle_event(event) is True

    record = load_instance("anna-ab12")
    assert record is not None and record.status == "stopped"
    assert "⚠️ SPhoto: Zahlung fehlgeschlagen" in fake_email().subjects()


@pytest.mark.asyncio
async def test_subscription_deleted_stops_instance_from_customer_metadata() -> None:
    make_instance("anna-ab12")
    fake_billing().customers["cus_1"] = {"id": "cus_1", "metadata": {"sphoto_id": "anna-ab12"}}
    event = {
        "id": "evt_3",
        "type": "customer.subscription.deleted",
        "data": {"object": {"customer": "cus_1"}},
    }
    await billing.handle_event(event)
    record = load_instance("anna-ab12")
    assert record is not None and record.status == "stopped"


@pytest.mark.asyncio
async def test_subscription_updated_applies_new_price() -> None:
    make_instance("anna-ab12")
    fake_billing().customers["cus_1"] = {"id": "cus_1", "metadata": {"sphoto_id": "anna-ab12"}}
    subscription = fake_subscription("sub_1", "price_pro", 1_900_000_000)
    subscription["customer"] = "cus_1"
    event = {"id": "evt_4", "type": "customer.subscription.updated", "data": {"object": subscription}}
    await billing.handle_event(event)
    record = load_instance("anna-ab12")
    assert record is not None and record.plan == "Pro"


@pytest.mark.asyncio
async def test_unknown_event_types_are_acknowledged() -> None:
    assert await billing.handle_event({"id": "evt_5", "type": "charge.refunded"}) is False


@pytest.mark.asyncio
async def test_shared_mode_payment_failed_only_emails(monkeypatch) -> None:
    monkeypatch.setenv("DEPLOYMENT_MODE", "shared")
    get_settings.cache_clear()
    make_shared_user("lena-x1y2", tier="basic", quota_gb=200, stripe_customer_id="cus_9")
    event = {"id": "evt_6", "type": "invoice.payment_failed", "data": {"object": {"customer": "cus_9"}}}
    await billing.handle_event(event)
    sent = fake_email().sent
    assert [message.to for message in sent] == [("lena@example.com",)]


@pytest.mark.asyncio
async def test_session_status_falls_back_to_billing_provider() -> None:
    fake_billing().sessions["cs_7"] = {"id": "cs_7", "payment_status": "paid"}
    status = await billing.get_session_status("cs_7")
    assert status.status == "processing"
    missing = await billing.get_session_status("cs_missing")
    assert missing.status == "unknown"


@pytest.mark.asyncio
async def test_checkout_link_carries_subdomain_and_platform() -> None:
    url = await billing.create_checkout_session("basic", "Anna", "nextcloud")
    gateway = fake_billing()
    assert url == "https://checkout.fake/cs_fake_1"
    request = gateway.checkout_requests[0]
    assert request["price_id"] == "price_basic"
    assert request["metadata"] == {"platform": "nextcloud", "subdomain": "anna"}
