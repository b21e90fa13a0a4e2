from __future__ import annotations

import time

import httpx

from sphoto.core.config import get_settings
from sphoto.core.errors import ConfigError, EmailDeliveryError
from sphoto.providers.email.base import EmailMessage
from sphoto.services.telemetry import record_external_call


class ResendEmailSender:
    def __init__(self, api_key: str, sender: str, api_url: str) -> None:
        if not api_key:
            raise ConfigError("RESEND_API_KEY is not configured")
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url

    async def send(self, message: EmailMessage) -> None:
        payload = {
            "from": self._sender,
            "to": list(message.to),
            "subject": message.subject,
            "html": message.html,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=get_settings().http_timeout_s) as client:
                response = await client.post(self._api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            record_external_call(
                integration="email", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise EmailDeliveryError(f"Email provider unreachable: {exc}") from exc
        record_external_call(
            integration="email",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=response.is_success,
        )
        if not response.is_success:
            raise EmailDeliveryError(f"Email provider rejected message: HTTP {response.status_code}")
