from __future__ import annotations

import logging
from typing import Any

from sphoto.core.config import Plan, get_settings, plan_for_key, plan_for_price
from sphoto.core.errors import BillingProviderError, ValidationFailedError
from sphoto.domain.models import InstanceMetadata, Platform, SessionStatus
from sphoto.persistence.repos.billing_events import is_event_processed, mark_event_processed
from sphoto.persistence.repos.instances import list_instances, update_instance
from sphoto.persistence.sessions import get_session_store
from sphoto.providers.billing.base import subscription_price_id
from sphoto.providers.billing.factory import get_billing_gateway
from sphoto.providers.platforms.base import instance_url
from sphoto.providers.platforms.factory import supported_platforms
from sphoto.services import shared_users
from sphoto.services.email import (
    send_payment_failed_email,
    send_shared_welcome_email,
    send_tier_changed_email,
    send_welcome_email,
)
from sphoto.services.plans import handle_plan_change
from sphoto.services.provisioning import create_instance, stop_instance, unique_instance_id
from sphoto.services.subdomain import check_subdomain
from sphoto.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

MSG_CREATING = "Erstelle deine Cloud..."
MSG_STARTING = "Container werden gestartet..."
MSG_WAITING_TLS = "Warte auf SSL-Zertifikat..."
MSG_SENDING_EMAIL = "Sende Willkommens-E-Mail..."
MSG_COMPLETE = "Deine Cloud ist bereit!"
MSG_UNKNOWN_PLAN = "Plan nicht erkannt. Bitte kontaktiere den Support."
MSG_MISSING_EMAIL = "Keine E-Mail-Adresse gefunden. Bitte kontaktiere den Support."
MSG_PAID_PROCESSING = "Zahlung erhalten, erstelle Cloud..."
MSG_AWAITING_PAYMENT = "Warte auf Zahlung..."
MSG_SESSION_NOT_FOUND = "Session nicht gefunden"


def _set_status(session_id: str, status: SessionStatus) -> None:
    get_session_store().set(session_id, status)


def _progress(session_id: str, message: str) -> None:
    _set_status(session_id, SessionStatus(status="processing", message=message))


async def create_checkout_session(
    plan_key: str, subdomain: str | None = None, platform: str = "immich"
) -> str:
    plan = plan_for_key(plan_key)
    if plan is None:
        raise ValidationFailedError("Invalid plan")
    if platform not in supported_platforms():
        raise ValidationFailedError("Invalid platform")
    metadata = {"platform": platform}
    if subdomain:
        check = check_subdomain(subdomain)
        if not check.available:
            raise ValidationFailedError(check.error or "Invalid subdomain")
        metadata["subdomain"] = check.subdomain
    domain = get_settings().domain
    return await get_billing_gateway().create_checkout_session(
        price_id=plan.price_id,
        success_url=f"https://{domain}/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"https://{domain}/#pricing",
        metadata=metadata,
    )


async def create_customer_portal_url(customer_id: str) -> str:
    return await get_billing_gateway().create_billing_portal_session(
        customer_id, return_url=f"https://{get_settings().domain}/portal"
    )


def verify_event(payload: bytes, signature: str) -> dict[str, Any]:
    # Raises WebhookSignatureError; nothing is processed for unverified payloads.
    return get_billing_gateway().construct_event(payload, signature)


async def _resolve_email(session: dict[str, Any]) -> str | None:
    details = session.get("customer_details") or {}
    email = details.get("email") or session.get("customer_email")
    if email:
        return email
    customer_id = session.get("customer")
    if not customer_id:
        return None
    customer = await get_billing_gateway().retrieve_customer(customer_id)
    return customer.get("email")


async def _resolve_plan(session: dict[str, Any]) -> Plan | None:
    subscription_id = session.get("subscription")
    if not subscription_id:
        return None
    subscription = await get_billing_gateway().retrieve_subscription(subscription_id)
    return plan_for_price(subscription_price_id(subscription))


def _claim_instance_id(requested: str | None, email: str, session_id: str) -> str:
    # The name was free at checkout time; another payment may have claimed it since.
    if requested:
        check = check_subdomain(requested)
        if check.available:
            return check.subdomain
        logger.warning(
            "checkout_subdomain_unavailable session_id=%s subdomain=%s error=%s",
            session_id,
            requested,
            check.error,
        )
    return unique_instance_id(email)


async def _handle_checkout_completed(session: dict[str, Any]) -> None:
    session_id = session["id"]
    if session.get("mode") not in (None, "subscription"):
        return
    email = await _resolve_email(session)
    if not email:
        logger.warning("checkout_missing_email session_id=%s", session_id)
        _set_status(session_id, SessionStatus(status="error", message=MSG_MISSING_EMAIL))
        return

    _progress(session_id, MSG_CREATING)
    plan = await _resolve_plan(session)
    if plan is None:
        logger.warning("checkout_unknown_plan session_id=%s", session_id)
        _set_status(session_id, SessionStatus(status="error", message=MSG_UNKNOWN_PLAN))
        return

    metadata = session.get("metadata") or {}
    platform: Platform = "nextcloud" if metadata.get("platform") == "nextcloud" else "immich"
    customer_id = session.get("customer")
    subscription_id = session.get("subscription")

    if get_settings().deployment_mode == "shared":
        await _provision_shared(session_id, email, plan, customer_id, subscription_id)
        return

    instance_id = _claim_instance_id(metadata.get("subdomain"), email, session_id)
    _progress(session_id, MSG_STARTING)
    result = await create_instance(instance_id, email, plan, platform)
    _progress(session_id, MSG_WAITING_TLS)

    def _apply(record: InstanceMetadata) -> None:
        record.stripe_customer_id = customer_id
        record.stripe_subscription_id = subscription_id

    await update_instance(instance_id, _apply)
    if customer_id:
        try:
            await get_billing_gateway().update_customer_metadata(
                customer_id, {"sphoto_id": instance_id, "platform": platform}
            )
        except BillingProviderError as exc:
            logger.warning("checkout_customer_tag_failed instance_id=%s error=%s", instance_id, exc)

    _progress(session_id, MSG_SENDING_EMAIL)
    await send_welcome_email(email, instance_id, plan.name, plan.storage_gb, result.password)
    _set_status(
        session_id,
        SessionStatus(
            status="complete",
            message=MSG_COMPLETE,
            instance_id=instance_id,
            instance_url=instance_url(instance_id),
            email=email,
            plan=plan.name,
            platform=platform,
            auto_setup=result.success,
        ),
    )
    increment_counter("checkout_provisioned")
    logger.info("checkout_provisioned instance_id=%s auto_setup=%s", instance_id, result.success)


async def _provision_shared(
    session_id: str,
    email: str,
    plan: Plan,
    customer_id: str | None,
    subscription_id: str | None,
) -> None:
    tier = "pro" if plan.key == "pro" else "basic"
    created = await shared_users.create_shared_user(email, tier, plan.storage_gb)
    user = await shared_users.update_shared_user_stripe(
        created.user.visible_id, customer_id, subscription_id
    )
    config = shared_users.shared_instance_config(user.instance)
    if customer_id:
        try:
            await get_billing_gateway().update_customer_metadata(
                customer_id, {"sphoto_user": user.visible_id}
            )
        except BillingProviderError as exc:
            logger.warning("checkout_customer_tag_failed visible_id=%s error=%s", user.visible_id, exc)
    _progress(session_id, MSG_SENDING_EMAIL)
    await send_shared_welcome_email(email, config.url, user.tier, user.quota_gb, created.password)
    _set_status(
        session_id,
        SessionStatus(
            status="complete",
            message=MSG_COMPLETE,
            instance_id=user.visible_id,
            instance_url=config.url,
            email=email,
            plan=plan.name,
            platform="immich",
            auto_setup=True,
        ),
    )


async def _customer(customer_id: str | None) -> dict[str, Any]:
    if not customer_id:
        return {}
    return await get_billing_gateway().retrieve_customer(customer_id)


def _instance_id_for(customer: dict[str, Any]) -> str | None:
    # Customer metadata first; fall back to the billing ids stored on instances.
    instance_id = (customer.get("metadata") or {}).get("sphoto_id")
    if instance_id:
        return instance_id
    customer_id = customer.get("id")
    if not customer_id:
        return None
    record = next(
        (item for item in list_instances() if item.stripe_customer_id == customer_id), None
    )
    return record.id if record else None


async def _handle_payment_failed(invoice: dict[str, Any]) -> None:
    customer_id = invoice.get("customer")
    email = invoice.get("customer_email")
    if get_settings().deployment_mode == "shared":
        user = shared_users.get_shared_user_by_stripe_customer(customer_id) if customer_id else None
        target = email or (user.email if user else None)
        if target:
            await send_payment_failed_email(target)
        return
    customer = await _customer(customer_id)
    instance_id = _instance_id_for(customer)
    if not instance_id:
        logger.warning("payment_failed_unknown_customer customer_id=%s", customer_id)
        return
    await stop_instance(instance_id)
    logger.info("instance_paused_payment_failed instance_id=%s", instance_id)
    target = customer.get("email") or email
    if target:
        await send_payment_failed_email(target)


async def _handle_subscription_deleted(subscription: dict[str, Any]) -> None:
    customer_id = subscription.get("customer")
    if get_settings().deployment_mode == "shared":
        user = shared_users.get_shared_user_by_stripe_customer(customer_id) if customer_id else None
        if user is None or user.status == "deleted":
            return
        outcome = await shared_users.migrate_user_between_instances(user.visible_id, "free")
        await send_tier_changed_email(user.email, "free", outcome.user.quota_gb, outcome.password)
        return
    instance_id = _instance_id_for(await _customer(customer_id))
    if instance_id:
        await stop_instance(instance_id)
        logger.info("instance_stopped_subscription_deleted instance_id=%s", instance_id)


async def _handle_subscription_updated(subscription: dict[str, Any]) -> None:
    customer_id = subscription.get("customer")
    price_id = subscription_price_id(subscription)
    if get_settings().deployment_mode == "shared":
        user = shared_users.get_shared_user_by_stripe_customer(customer_id) if customer_id else None
        plan = plan_for_price(price_id)
        if user is None or plan is None:
            return
        tier = "pro" if plan.key == "pro" else "basic"
        if user.tier == tier and user.quota_gb == plan.storage_gb:
            return
        outcome = await shared_users.migrate_user_between_instances(user.visible_id, tier, plan.storage_gb)
        await send_tier_changed_email(user.email, tier, outcome.user.quota_gb, outcome.password)
        return
    instance_id = _instance_id_for(await _customer(customer_id))
    if instance_id:
        await handle_plan_change(instance_id, price_id)


_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "invoice.payment_failed": _handle_payment_failed,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "customer.subscription.updated": _handle_subscription_updated,
}


async def handle_event(event: dict[str, Any]) -> bool:
    """Dispatch one verified billing event.

    Returns False for event types that are acknowledged without action and
    for redeliveries that already succeeded. Handler errors propagate so the
    HTTP layer answers 500 and the provider retries.
    """
    event_type = event.get("type", "")
    event_id = event.get("id")
    handler = _HANDLERS.get(event_type)
    if handler is None:
        logger.info("billing_event_ignored event_type=%s", event_type)
        return False
    if event_id and is_event_processed(event_id):
        logger.info("billing_event_duplicate event_id=%s event_type=%s", event_id, event_type)
        return False
    payload = (event.get("data") or {}).get("object") or {}
    await handler(payload)
    if event_id:
        await mark_event_processed(event_id)
    increment_counter(f"billing_event.{event_type}")
    logger.info("billing_event_handled event_id=%s event_type=%s", event_id, event_type)
    return True


async def get_session_status(session_id: str) -> SessionStatus:
    cached = get_session_store().get(session_id)
    if cached is not None:
        return cached
    try:
        session = await get_billing_gateway().retrieve_checkout_session(session_id)
    except BillingProviderError:
        return SessionStatus(status="unknown", message=MSG_SESSION_NOT_FOUND)
    if session.get("payment_status") == "paid":
        return SessionStatus(status="processing", message=MSG_PAID_PROCESSING)
    return SessionStatus(status="pending", message=MSG_AWAITING_PAYMENT)
