from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient

from sphoto.apps.api.main import create_app
from sphoto.apps.api.routes import webhook
from sphoto.domain.models import Branding, SessionStatus
from sphoto.persistence.sessions import get_session_store
from sphoto.providers.billing.fake import FAKE_SIGNATURE
from sphoto.tests.utils.factories import ADMIN_HEADERS, fake_billing, make_instance


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


@pytest.mark.asyncio
async def test_health_and_request_id_header() -> None:
    async with _client() as client:
        response = await client.get("/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["domain"] == "sphoto.test"
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_subdomain_check() -> None:
    make_instance("anna")
    async with _client() as client:
        free = await client.get("/subdomain/check/Meine-Fotos")
        taken = await client.get("/subdomain/check/anna")
        reserved = await client.get("/subdomain/check/admin")
    assert free.json() == {"subdomain": "meine-fotos", "available": True, "error": None}
    assert taken.json()["available"] is False
    assert reserved.json()["error"] == "Diese Subdomain ist reserviert."


@pytest.mark.asyncio
async def test_checkout_redirects_to_billing_provider() -> None:
    async with _client() as client:
        response = await client.get("/checkout/pro", params={"subdomain": "Anna", "platform": "immich"})
    assert response.status_code == 303
    assert response.headers["location"] == "https://checkout.fake/cs_fake_1"
    assert fake_billing().checkout_requests[0]["metadata"]["subdomain"] == "anna"


@pytest.mark.asyncio
async def test_checkout_rejects_unknown_plan() -> None:
    async with _client() as client:
        response = await client.get("/checkout/enterprise")
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == {"code": "BAD_REQUEST", "message": "Invalid plan"}
    assert body["meta"]["request_id"]
    assert fake_billing().checkout_requests == []


@pytest.mark.asyncio
async def test_checkout_rejects_taken_subdomain() -> None:
    make_instance("anna")
    async with _client() as client:
        response = await client.get("/checkout/basic", params={"subdomain": "anna"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Diese Subdomain ist bereits vergeben."


@pytest.mark.asyncio
async def test_session_status_reads_progress() -> None:
    get_session_store().set("cs_1", SessionStatus(status="processing", message="Erstelle deine Cloud..."))
    async with _client() as client:
        known = await client.get("/status/cs_1")
        unknown = await client.get("/status/cs_nope")
    assert known.json()["status"] == "processing"
    assert unknown.json()["status"] == "unknown"


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature() -> None:
    async with _client() as client:
        response = await client.post(
            "/webhook", content=b'{"id": "evt_1"}', headers={"stripe-signature": "forged"}
        )
    assert response.status_code == 400
    assert response.json()["error"].startswith("Webhook Error:")


@pytest.mark.asyncio
async def test_webhook_acknowledges_verified_event() -> None:
    payload = json.dumps({"id": "evt_1", "type": "customer.created", "data": {"object": {}}})
    async with _client() as client:
        response = await client.post(
            "/webhook", content=payload, headers={"stripe-signature": FAKE_SIGNATURE}
        )
    assert response.status_code == 200
    assert response.json() == {"received": True, "handled": False}


@pytest.mark.asyncio
async def test_webhook_handler_failure_returns_500(monkeypatch) -> None:
    async def _boom(_event: dict) -> bool:
        raise RuntimeError("disk full")

    monkeypatch.setattr(webhook, "handle_event", _boom)
    payload = json.dumps({"id": "evt_2", "type": "invoice.payment_failed"})
    async with _client() as client:
        response = await client.post(
            "/webhook", content=payload, headers={"stripe-signature": FAKE_SIGNATURE}
        )
    assert response.status_code == 500
    assert response.json() == {"error": "Webhook handler failed"}


@pytest.mark.asyncio
async def test_custom_css_is_public() -> None:
    make_instance("anna-ab12", branding=Branding(primary_color="#00ff00"))
    async with _client() as client:
        styled = await client.get("/api/instances/anna-ab12/custom.css")
        plain = await client.get("/api/instances/missing-xx00/custom.css")
    assert styled.status_code == 200
    assert styled.headers["content-type"].startswith("text/css")
    assert "--immich-primary: #00ff00;" in styled.text
    assert plain.text == "/* No custom branding */"


@pytest.mark.asyncio
async def test_unknown_export_token_is_404() -> None:
    async with _client() as client:
        response = await client.get("/api/exports/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "EXPORT_NOT_FOUND"


@pytest.mark.asyncio
async def test_maintenance_status_without_windows() -> None:
    async with _client() as client:
        response = await client.get("/maintenance/status")
    assert response.json() == {
        "operational": True,
        "active_maintenance": None,
        "scheduled_maintenance": [],
    }


@pytest.mark.asyncio
async def test_admin_routes_require_api_key() -> None:
    async with _client() as client:
        missing = await client.get("/api/instances")
        wrong = await client.get("/api/instances", headers={"x-api-key": "nope"})
        ok = await client.get("/api/instances", headers=ADMIN_HEADERS)
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert wrong.status_code == 401
    assert ok.status_code == 200
    assert ok.json() == []


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope() -> None:
    async with _client() as client:
        response = await client.get("/nope")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"
