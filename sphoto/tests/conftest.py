from __future__ import annotations

import pytest

from sphoto.core.config import get_settings
from sphoto.persistence.sessions import reset_session_store
from sphoto.persistence.store import reset_locks
from sphoto.providers.billing.factory import set_billing_gateway
from sphoto.providers.container.factory import set_container_engine
from sphoto.providers.email.factory import set_email_sender
from sphoto.providers.http import set_http_transport
from sphoto.services.telemetry import reset_telemetry


ADMIN_KEY = "test-admin-key"


def _reset_process_state() -> None:
    get_settings.cache_clear()
    set_container_engine(None)
    set_billing_gateway(None)
    set_email_sender(None)
    set_http_transport(None)
    reset_session_store()
    reset_locks()
    reset_telemetry()


@pytest.fixture(autouse=True)
def sphoto_env(tmp_path, monkeypatch):
    # Every test gets its own data root and offline providers.
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("DOMAIN", "sphoto.test")
    monkeypatch.setenv("BILLING_PROVIDER", "fake")
    monkeypatch.setenv("EMAIL_PROVIDER", "fake")
    monkeypatch.setenv("CONTAINER_ENGINE", "fake")
    monkeypatch.setenv("ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setenv("ADMIN_EMAIL", "ops@sphoto.test")
    monkeypatch.setenv("STRIPE_PRICE_BASIC", "price_basic")
    monkeypatch.setenv("STRIPE_PRICE_PRO", "price_pro")
    monkeypatch.setenv("EXTERNAL_STORAGE_PATH", "")
    monkeypatch.setenv("DEPLOYMENT_MODE", "dedicated")
    monkeypatch.setenv("READY_POLL_INTERVAL_S", "0")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    _reset_process_state()
    yield tmp_path
    _reset_process_state()
