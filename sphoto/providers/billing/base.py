from __future__ import annotations

from typing import Any, Protocol


class BillingGateway(Protocol):
    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        ...

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> str:
        ...

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        ...

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        ...

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        ...

    async def update_customer_metadata(self, customer_id: str, metadata: dict[str, str]) -> None:
        ...

    async def change_subscription_price(
        self, subscription_id: str, price_id: str, *, proration_behavior: str
    ) -> dict[str, Any]:
        ...

    async def create_billing_portal_session(self, customer_id: str, return_url: str) -> str:
        ...


def subscription_price_id(subscription: dict[str, Any]) -> str | None:
    # First line item carries the plan price.
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


def subscription_period_end(subscription: dict[str, Any]) -> int | None:
    # Newer API versions moved the period onto the subscription item.
    if subscription.get("current_period_end"):
        return int(subscription["current_period_end"])
    items = (subscription.get("items") or {}).get("data") or []
    if items and items[0].get("current_period_end"):
        return int(items[0]["current_period_end"])
    return None
