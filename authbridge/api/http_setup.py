"""Middleware and exception handlers shared by the authentication API."""

from __future__ import annotations

import re
import time
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from authbridge.api.contracts import ApiErrorResponse
from authbridge.api.errors import ApiErrorCode, to_error_payload
from authbridge.core.config import AppConfig
from authbridge.core.logging import set_correlation_id

# Auth responses carry session material and must never be cached or framed.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def incoming_correlation_id(request: Request) -> str:
    """Reuse a caller-supplied request id when it is well formed, else mint one."""
    for header in ("x-request-id", "x-correlation-id"):
        value = (request.headers.get(header) or "").strip()
        if _CORRELATION_ID_PATTERN.match(value):
            return value
    return uuid.uuid4().hex


def _error_json(
    status_code: int,
    error_code: str,
    message: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiErrorResponse(error_code=error_code, message=message).model_dump(),
        headers=headers,
    )


def _request_extra(request: Request, status_code: int) -> dict[str, Any]:
    return {"path": request.url.path, "method": request.method, "status_code": status_code}


def register_http_middleware(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach body-size guard, correlation ids and security headers."""
    max_bytes = config.security.request_max_bytes

    @app.middleware("http")
    async def body_size_limit_middleware(request: Request, call_next):
        try:
            declared = int(request.headers.get("content-length") or 0)
        except ValueError:
            declared = 0
        if declared > max_bytes:
            logger.warning("request_rejected_too_large", extra=_request_extra(request, 413))
            return _error_json(
                413,
                ApiErrorCode.REQUEST_TOO_LARGE,
                f"Request size exceeds configured limit ({max_bytes} bytes).",
            )
        return await call_next(request)

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = incoming_correlation_id(request)
        set_correlation_id(correlation_id)
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        extra = _request_extra(request, response.status_code)
        extra["duration_ms"] = round((time.perf_counter() - started) * 1000, 1)
        logger.info("request_completed", extra=extra)
        return response


def register_exception_handlers(app: FastAPI, *, logger: Any) -> None:
    """Render every failure as the ``{error_code, message}`` envelope."""

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        payload = to_error_payload(exc.detail, exc.status_code)
        logger.warning(
            "http_exception: %s",
            payload["error_code"],
            extra=_request_extra(request, exc.status_code),
        )
        # Retry-After from the rate limiters must survive to the client.
        return _error_json(
            exc.status_code,
            payload["error_code"],
            payload["message"],
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("validation_exception", extra=_request_extra(request, 422))
        fields = sorted(
            {".".join(str(part) for part in error.get("loc", ())[1:]) for error in exc.errors()}
            - {""}
        )
        message = f"Invalid request fields: {', '.join(fields)}" if fields else "Invalid request"
        return _error_json(422, ApiErrorCode.VALIDATION_ERROR, message)

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unexpected_exception", extra=_request_extra(request, 500))
        return _error_json(500, ApiErrorCode.INTERNAL_SERVER_ERROR, "Internal server error")
