from __future__ import annotations

from sphoto.core.config import get_settings
from sphoto.core.errors import ConfigError
from sphoto.providers.email.base import EmailSender
from sphoto.providers.email.fake import FakeEmailSender
from sphoto.providers.email.resend import ResendEmailSender


_override: EmailSender | None = None
_fake: FakeEmailSender | None = None


def get_email_sender() -> EmailSender:
    global _fake
    if _override is not None:
        return _override
    settings = get_settings()
    provider = (settings.email_provider or "resend").lower()
    if provider == "resend":
        return ResendEmailSender(settings.resend_api_key, settings.email_from, settings.resend_api_url)
    if provider == "fake":
        if _fake is None:
            _fake = FakeEmailSender()
        return _fake
    raise ConfigError(f"Unsupported email provider: {provider}")


def set_email_sender(sender: EmailSender | None) -> None:
    global _override, _fake
    _override = sender
    _fake = None
