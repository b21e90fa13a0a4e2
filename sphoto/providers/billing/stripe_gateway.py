from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, TypeVar

import stripe

from sphoto.core.errors import BillingProviderError, ConfigError, WebhookSignatureError
from sphoto.providers.billing.base import subscription_price_id
from sphoto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _as_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway:
    def __init__(self, api_key: str, webhook_secret: str) -> None:
        if not api_key:
            raise ConfigError("STRIPE_SECRET_KEY is not configured")
        self._api_key = api_key
        self._webhook_secret = webhook_secret

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        # The SDK is blocking; run it off the event loop and map SDK errors.
        start = time.monotonic()
        try:
            result = await asyncio.to_thread(fn)
        except stripe.StripeError as exc:
            record_external_call(
                integration="billing", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            logger.warning("stripe_call_failed operation=%s error=%s", operation, exc)
            raise BillingProviderError(f"{operation} failed: {exc}") from exc
        record_external_call(
            integration="billing", latency_ms=(time.monotonic() - start) * 1000.0, success=True
        )
        return result

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        if not self._webhook_secret:
            raise ConfigError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise WebhookSignatureError(str(exc)) from exc
        return _as_dict(event)

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> str:
        session = await self._call(
            "checkout.create",
            lambda: stripe.checkout.Session.create(
                api_key=self._api_key,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            ),
        )
        return session.url

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        session = await self._call(
            "checkout.retrieve",
            lambda: stripe.checkout.Session.retrieve(session_id, api_key=self._api_key),
        )
        return _as_dict(session)

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        subscription = await self._call(
            "subscription.retrieve",
            lambda: stripe.Subscription.retrieve(subscription_id, api_key=self._api_key),
        )
        return _as_dict(subscription)

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        customer = await self._call(
            "customer.retrieve",
            lambda: stripe.Customer.retrieve(customer_id, api_key=self._api_key),
        )
        return _as_dict(customer)

    async def update_customer_metadata(self, customer_id: str, metadata: dict[str, str]) -> None:
        await self._call(
            "customer.modify",
            lambda: stripe.Customer.modify(customer_id, api_key=self._api_key, metadata=metadata),
        )

    async def change_subscription_price(
        self, subscription_id: str, price_id: str, *, proration_behavior: str
    ) -> dict[str, Any]:
        # Replace the price on the existing first item instead of adding a second item.
        subscription = await self.retrieve_subscription(subscription_id)
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            raise BillingProviderError(f"Subscription {subscription_id} has no items")
        if subscription_price_id(subscription) == price_id:
            return subscription
        updated = await self._call(
            "subscription.modify",
            lambda: stripe.Subscription.modify(
                subscription_id,
                api_key=self._api_key,
                items=[{"id": items[0]["id"], "price": price_id}],
                proration_behavior=proration_behavior,
            ),
        )
        return _as_dict(updated)

    async def create_billing_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "billing_portal.create",
            lambda: stripe.billing_portal.Session.create(
                api_key=self._api_key, customer=customer_id, return_url=return_url
            ),
        )
        return session.url
