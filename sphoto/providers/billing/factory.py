from __future__ import annotations

from sphoto.core.config import get_settings
from sphoto.core.errors import ConfigError
from sphoto.providers.billing.base import BillingGateway
from sphoto.providers.billing.fake import FakeBillingGateway
from sphoto.providers.billing.stripe_gateway import StripeGateway


_override: BillingGateway | None = None
_fake: FakeBillingGateway | None = None


def get_billing_gateway() -> BillingGateway:
    global _fake
    if _override is not None:
        return _override
    settings = get_settings()
    provider = (settings.billing_provider or "stripe").lower()
    if provider == "stripe":
        return StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
    if provider == "fake":
        if _fake is None:
            _fake = FakeBillingGateway()
        return _fake
    raise ConfigError(f"Unsupported billing provider: {provider}")


def set_billing_gateway(gateway: BillingGateway | None) -> None:
    global _override, _fake
    _override = gateway
    _fake = None
