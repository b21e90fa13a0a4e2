from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import FileResponse, PlainTextResponse, RedirectResponse

from sphoto.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from sphoto.core.config import get_settings
from sphoto.core.errors import InstanceNotFoundError
from sphoto.domain.models import SessionStatus
from sphoto.services.billing import create_checkout_session, get_session_status
from sphoto.services.branding import generate_custom_css, get_branding
from sphoto.services.export import get_export_by_token
from sphoto.services.maintenance import PublicStatus, get_public_status
from sphoto.services.subdomain import SubdomainCheck, check_subdomain


router = APIRouter(tags=["public"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "domain": get_settings().domain,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/subdomain/check/{name}")
async def subdomain_check(name: str) -> SubdomainCheck:
    return check_subdomain(name)


@router.get("/checkout/{plan}", status_code=303)
async def checkout(
    plan: str,
    subdomain: str | None = Query(default=None),
    platform: str = Query(default="immich"),
) -> RedirectResponse:
    # Validation failures surface as 400 before any billing call is made.
    url = await create_checkout_session(plan, subdomain.lower() if subdomain else None, platform)
    return RedirectResponse(url=url, status_code=303)


@router.get("/status/{session_id}")
async def session_status(session_id: str) -> SessionStatus:
    return await get_session_status(session_id)


@router.get("/api/instances/{instance_id}/custom.css", response_class=PlainTextResponse)
async def custom_css(instance_id: str) -> PlainTextResponse:
    try:
        branding = get_branding(instance_id)
    except InstanceNotFoundError:
        branding = None
    css = generate_custom_css(branding) or "/* No custom branding */"
    return PlainTextResponse(css, media_type="text/css")


@router.get("/api/exports/{token}", response_class=FileResponse)
async def download_export(token: str) -> FileResponse:
    download = get_export_by_token(token)
    if download is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "EXPORT_NOT_FOUND", "message": "Export not found or expired"},
        )
    return FileResponse(
        download.path,
        media_type="application/zip",
        filename=f"sphoto-export-{download.job.instance_id}.zip",
    )


@router.get("/maintenance/status")
async def maintenance_status() -> PublicStatus:
    return get_public_status()
