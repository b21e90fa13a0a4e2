from __future__ import annotations

import pytest

from sphoto.core.errors import InstanceNotFoundError, ValidationFailedError
from sphoto.domain.models import Branding
from sphoto.services import branding
from sphoto.tests.utils.factories import make_instance


@pytest.mark.parametrize("color", ["#fff", "#1A2b3C", "rgb(1, 2, 3)", "rgba(1,2,3,0.5)", "Purple"])
def test_accepts_supported_colors(color: str) -> None:
    assert branding.sanitize_branding(Branding(primary_color=color)).primary_color == color


@pytest.mark.parametrize("color", ["#12", "red; background: url(x)", "hsl(1,2,3)", "tomato"])
def test_rejects_other_colors(color: str) -> None:
    with pytest.raises(ValidationFailedError):
        branding.sanitize_branding(Branding(primary_color=color))


@pytest.mark.parametrize("url", ["javascript:alert(1)", "ftp://cdn.example.com/logo.png", "/logo.png"])
def test_rejects_non_http_urls(url: str) -> None:
    with pytest.raises(ValidationFailedError):
        branding.sanitize_branding(Branding(logo_url=url))


def test_truncates_long_text() -> None:
    cleaned = branding.sanitize_branding(Branding(welcome_message="x" * 600, app_name="y" * 80))
    assert len(cleaned.welcome_message) == branding.MAX_WELCOME_MESSAGE
    assert len(cleaned.app_name) == branding.MAX_APP_NAME


@pytest.mark.asyncio
async def test_update_merges_with_existing_branding() -> None:
    make_instance("anna-ab12")
    await branding.update_branding("anna-ab12", Branding(primary_color="#ff0000"))
    merged = await branding.update_branding("anna-ab12", Branding(app_name="Anna Fotos"))

    assert merged.primary_color == "#ff0000"
    assert merged.app_name == "Anna Fotos"
    assert branding.get_branding("anna-ab12") == merged

    await branding.delete_branding("anna-ab12")
    assert branding.get_branding("anna-ab12") is None


@pytest.mark.asyncio
async def test_missing_instance() -> None:
    with pytest.raises(InstanceNotFoundError):
        branding.get_branding("missing-xx00")
    with pytest.raises(InstanceNotFoundError):
        await branding.update_branding("missing-xx00", Branding(app_name="x"))


def test_css_for_empty_branding() -> None:
    assert branding.generate_custom_css(None) == ""
    assert branding.generate_custom_css(Branding()) == ""


def test_css_escapes_quoted_values() -> None:
    css = branding.generate_custom_css(
        Branding(
            primary_color="#123456",
            logo_url="https://cdn.example.com/it's.png",
            welcome_message="Hallo 'Welt'\n}",
        )
    )
    assert "--immich-primary: #123456;" in css
    assert "url('https://cdn.example.com/it\\'s.png')" in css
    assert "content: 'Hallo \\'Welt\\'\\A }';" in css
