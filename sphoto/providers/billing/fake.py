from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from sphoto.core.errors import BillingProviderError, WebhookSignatureError


FAKE_SIGNATURE = "fake-signature"


@dataclass
class FakeBillingGateway:
    # In-memory billing provider; signature must equal FAKE_SIGNATURE.
    sessions: dict[str, dict[str, Any]] = field(default_factory=dict)
    subscriptions: dict[str, dict[str, Any]] = field(default_factory=dict)
    customers: dict[str, dict[str, Any]] = field(default_factory=dict)
    price_changes: list[tuple[str, str, str]] = field(default_factory=list)
    checkout_requests: list[dict[str, Any]] = field(default_factory=list)
    fail_price_change: bool = False

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        if signature != FAKE_SIGNATURE:
            raise WebhookSignatureError("No signatures found matching the expected signature")
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            raise WebhookSignatureError("Invalid payload") from exc

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> str:
        session_id = f"cs_fake_{len(self.checkout_requests) + 1}"
        self.checkout_requests.append(
            {
                "id": session_id,
                "price_id": price_id,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
            }
        )
        return f"https://checkout.fake/{session_id}"

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        session = self.sessions.get(session_id)
        if session is None:
            raise BillingProviderError(f"No such checkout.session: {session_id}")
        return session

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            raise BillingProviderError(f"No such subscription: {subscription_id}")
        return subscription

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        customer = self.customers.get(customer_id)
        if customer is None:
            raise BillingProviderError(f"No such customer: {customer_id}")
        return customer

    async def update_customer_metadata(self, customer_id: str, metadata: dict[str, str]) -> None:
        customer = self.customers.setdefault(customer_id, {"id": customer_id})
        customer.setdefault("metadata", {}).update(metadata)

    async def change_subscription_price(
        self, subscription_id: str, price_id: str, *, proration_behavior: str
    ) -> dict[str, Any]:
        if self.fail_price_change:
            raise BillingProviderError("subscription.modify failed: fake failure")
        subscription = await self.retrieve_subscription(subscription_id)
        subscription["items"]["data"][0]["price"] = {"id": price_id}
        self.price_changes.append((subscription_id, price_id, proration_behavior))
        return subscription

    async def create_billing_portal_session(self, customer_id: str, return_url: str) -> str:
        return f"https://billing.fake/{customer_id}"


def fake_subscription(subscription_id: str, price_id: str, period_end: int) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "current_period_end": period_end,
        "items": {"data": [{"id": f"si_{subscription_id}", "price": {"id": price_id}}]},
    }
