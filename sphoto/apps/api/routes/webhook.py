from __future__ import annotations

import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from sphoto.core.errors import ConfigError, WebhookSignatureError
from sphoto.services.billing import handle_event, verify_event


logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


@router.post("/webhook")
async def billing_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
) -> JSONResponse:
    # The provider expects flat {"error": ...} bodies; non-2xx answers trigger redelivery.
    payload = await request.body()
    try:
        event = verify_event(payload, stripe_signature or "")
    except WebhookSignatureError as exc:
        logger.warning("webhook_signature_rejected error=%s", exc)
        return JSONResponse(status_code=400, content={"error": f"Webhook Error: {exc}"})
    except ConfigError as exc:
        logger.error("webhook_not_configured error=%s", exc)
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})

    try:
        handled = await handle_event(event)
    except Exception:  # noqa: BLE001 - answer 500 so the provider redelivers the event.
        logger.exception("webhook_handler_failed event_type=%s", event.get("type"))
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})
    return JSONResponse(status_code=200, content={"received": True, "handled": handled})
