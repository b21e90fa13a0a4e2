from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

from sphoto.core.errors import InstanceNotFoundError, ValidationFailedError
from sphoto.domain.models import Branding, InstanceMetadata
from sphoto.persistence.repos.instances import load_instance, update_instance


logger = logging.getLogger(__name__)

MAX_WELCOME_MESSAGE = 500
MAX_APP_NAME = 50

_HEX_COLOR = re.compile(r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_RGB_COLOR = re.compile(r"^rgba?\(\s*\d+\s*,\s*\d+\s*,\s*\d+\s*(,\s*[\d.]+\s*)?\)$")
_NAMED_COLORS = frozenset(
    {"red", "blue", "green", "orange", "purple", "pink", "yellow", "black", "white", "gray"}
)


def _clean_url(value: str, field: str) -> str:
    parts = urlsplit(value.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationFailedError(f"{field} must be an http or https URL")
    return parts.geturl()


def _clean_color(value: str) -> str:
    color = value.strip()
    if _HEX_COLOR.match(color) or _RGB_COLOR.match(color) or color.lower() in _NAMED_COLORS:
        return color
    raise ValidationFailedError("primary_color must be a hex, rgb(a) or named color")


def sanitize_branding(branding: Branding) -> Branding:
    # Unset fields stay unset so the merge keeps existing values.
    cleaned = Branding()
    if branding.logo_url:
        cleaned.logo_url = _clean_url(branding.logo_url, "logo_url")
    if branding.favicon_url:
        cleaned.favicon_url = _clean_url(branding.favicon_url, "favicon_url")
    if branding.primary_color:
        cleaned.primary_color = _clean_color(branding.primary_color)
    if branding.welcome_message:
        cleaned.welcome_message = branding.welcome_message[:MAX_WELCOME_MESSAGE]
    if branding.app_name:
        cleaned.app_name = branding.app_name[:MAX_APP_NAME]
    return cleaned


def get_branding(instance_id: str) -> Branding | None:
    record = load_instance(instance_id)
    if record is None:
        raise InstanceNotFoundError(instance_id)
    return record.branding


async def update_branding(instance_id: str, branding: Branding) -> Branding:
    cleaned = sanitize_branding(branding)
    patch = cleaned.model_dump(exclude_none=True)

    def _apply(record: InstanceMetadata) -> None:
        current = record.branding or Branding()
        record.branding = current.model_copy(update=patch)

    record = await update_instance(instance_id, _apply)
    if record is None or record.branding is None:
        raise InstanceNotFoundError(instance_id)
    logger.info("branding_updated instance_id=%s fields=%s", instance_id, ",".join(sorted(patch)))
    return record.branding


async def delete_branding(instance_id: str) -> None:
    def _apply(record: InstanceMetadata) -> None:
        record.branding = None

    if await update_instance(instance_id, _apply) is None:
        raise InstanceNotFoundError(instance_id)
    logger.info("branding_deleted instance_id=%s", instance_id)


def _css_string(value: str) -> str:
    # Single-quoted CSS string literal.
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\A ").replace("\r", "")
    return f"'{escaped}'"


def generate_custom_css(branding: Branding | None) -> str:
    if branding is None:
        return ""
    css = ""
    if branding.primary_color:
        css += f":root {{\n  --immich-primary: {branding.primary_color};\n}}\n"
    if branding.logo_url:
        css += (
            "\n/* Custom logo */\n"
            '.immich-logo, [data-testid="logo"] {\n'
            f"  background-image: url({_css_string(branding.logo_url)}) !important;\n"
            "  background-size: contain !important;\n"
            "  background-repeat: no-repeat !important;\n"
            "}\n"
        )
    if branding.welcome_message:
        css += (
            "\n/* Welcome message */\n"
            ".login-form::before {\n"
            f"  content: {_css_string(branding.welcome_message)};\n"
            "  display: block;\n"
            "  text-align: center;\n"
            "  padding: 1rem;\n"
            "  margin-bottom: 1rem;\n"
            "  background: var(--immich-bg-secondary, #f3f4f6);\n"
            "  border-radius: 8px;\n"
            "}\n"
        )
    return css
