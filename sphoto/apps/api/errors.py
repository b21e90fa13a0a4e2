from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sphoto.apps.api.response import error_response
from sphoto.core.errors import (
    BillingProviderError,
    ConfigError,
    ContainerEngineError,
    ExportNotFoundError,
    InstanceExistsError,
    InstanceNotFoundError,
    MaintenanceNotFoundError,
    MaintenanceStateError,
    SharedUserNotFoundError,
    SPhotoError,
    TenantAppError,
    ValidationFailedError,
    WebhookSignatureError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Ordered most specific first; the first matching class wins.
_DOMAIN_ERRORS: tuple[tuple[type[SPhotoError], int, str], ...] = (
    (InstanceNotFoundError, 404, "INSTANCE_NOT_FOUND"),
    (SharedUserNotFoundError, 404, "SHARED_USER_NOT_FOUND"),
    (MaintenanceNotFoundError, 404, "MAINTENANCE_NOT_FOUND"),
    (ExportNotFoundError, 404, "EXPORT_NOT_FOUND"),
    (ValidationFailedError, 400, "BAD_REQUEST"),
    (WebhookSignatureError, 400, "WEBHOOK_SIGNATURE_INVALID"),
    (MaintenanceStateError, 409, "MAINTENANCE_STATE_CONFLICT"),
    (InstanceExistsError, 409, "INSTANCE_EXISTS"),
    (TenantAppError, 502, "TENANT_APP_ERROR"),
    (BillingProviderError, 502, "BILLING_PROVIDER_ERROR"),
    (ContainerEngineError, 502, "CONTAINER_ENGINE_ERROR"),
    (ConfigError, 503, "NOT_CONFIGURED"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def domain_status(exc: SPhotoError) -> tuple[int, str]:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def domain_exception_handler(request: Request, exc: SPhotoError) -> JSONResponse:
    # Domain errors carry user-facing messages; upstream failures are logged with the path.
    status_code, code = domain_status(exc)
    message = str(exc)
    if status_code == 500:
        logger.error("request_domain_error path=%s error=%s", request.url.path, exc)
        message = "Internal server error"
    elif status_code >= 500:
        logger.warning("request_upstream_failed path=%s code=%s error=%s", request.url.path, code, exc)
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("request_failed path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
