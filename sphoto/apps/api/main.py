from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from sphoto.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from sphoto.apps.api.routes.alerts import router as alerts_router
from sphoto.apps.api.routes.analytics import router as analytics_router
from sphoto.apps.api.routes.branding import router as branding_router
from sphoto.apps.api.routes.exports import router as exports_router
from sphoto.apps.api.routes.health import router as health_router
from sphoto.apps.api.routes.instances import router as instances_router
from sphoto.apps.api.routes.maintenance import router as maintenance_router
from sphoto.apps.api.routes.ops import router as ops_router
from sphoto.apps.api.routes.portal import router as portal_router
from sphoto.apps.api.routes.public import router as public_router
from sphoto.apps.api.routes.shared_users import router as shared_users_router
from sphoto.apps.api.routes.webhook import router as webhook_router
from sphoto.core.config import get_settings
from sphoto.core.errors import SPhotoError
from sphoto.core.logging import configure_logging
from sphoto.services.scheduler import run_startup_jobs, start_scheduler, stop_scheduler
from sphoto.services.telemetry import record_request


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    tasks = []
    if settings.scheduler_enabled:
        await run_startup_jobs()
        tasks = start_scheduler()
    logger.info("api_started domain=%s scheduler=%s", settings.domain, settings.scheduler_enabled)
    try:
        yield
    finally:
        if tasks:
            await stop_scheduler(tasks)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="SPhoto Automation API", lifespan=lifespan)

    origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        record_request(path=request.url.path, status_code=response.status_code, latency_ms=latency_ms)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(SPhotoError)
    async def _domain_exception_handler(request: Request, exc: SPhotoError):
        return await domain_exception_handler(request, exc)

    # Public surface: checkout, webhook, status page, branding CSS and downloads.
    app.include_router(public_router)
    app.include_router(webhook_router)
    app.include_router(portal_router)
    # Admin surface behind the x-api-key header.
    app.include_router(instances_router)
    app.include_router(branding_router)
    app.include_router(exports_router)
    app.include_router(analytics_router)
    app.include_router(alerts_router)
    app.include_router(health_router)
    app.include_router(maintenance_router)
    app.include_router(shared_users_router)
    app.include_router(ops_router)

    return app


app = create_app()
