"""Shared API error types and helpers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import HTTPException


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_INVALID_PHONE = "AUTH_INVALID_PHONE"
    AUTH_INVALID_EMAIL = "AUTH_INVALID_EMAIL"
    AUTH_EMPLOYEE_NOT_FOUND = "AUTH_EMPLOYEE_NOT_FOUND"
    AUTH_LOOKUP_FAILED = "AUTH_LOOKUP_FAILED"
    AUTH_DELIVERY_FAILED = "AUTH_DELIVERY_FAILED"
    AUTH_NO_PROVIDER = "AUTH_NO_PROVIDER"
    AUTH_CODE_INVALID = "AUTH_CODE_INVALID"
    AUTH_CODE_EXPIRED = "AUTH_CODE_EXPIRED"
    AUTH_CODE_EXHAUSTED = "AUTH_CODE_EXHAUSTED"
    AUTH_CODE_NOT_FOUND = "AUTH_CODE_NOT_FOUND"
    AUTH_MAGIC_LINK_INVALID = "AUTH_MAGIC_LINK_INVALID"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    QR_SESSION_NOT_FOUND = "QR_SESSION_NOT_FOUND"
    QR_SESSION_EXPIRED = "QR_SESSION_EXPIRED"
    QR_SESSION_UNAVAILABLE = "QR_SESSION_UNAVAILABLE"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


# Outcome codes that map to something other than 400 Bad Request.
_STATUS_BY_CODE: dict[str, int] = {
    ApiErrorCode.AUTH_EMPLOYEE_NOT_FOUND: 404,
    ApiErrorCode.AUTH_LOOKUP_FAILED: 503,
    ApiErrorCode.AUTH_DELIVERY_FAILED: 502,
    ApiErrorCode.AUTH_NO_PROVIDER: 503,
    ApiErrorCode.AUTH_INVALID_CREDENTIALS: 401,
    ApiErrorCode.AUTH_MAGIC_LINK_INVALID: 401,
    ApiErrorCode.AUTH_RATE_LIMITED: 429,
    ApiErrorCode.QR_SESSION_NOT_FOUND: 404,
    ApiErrorCode.QR_SESSION_EXPIRED: 410,
    ApiErrorCode.QR_SESSION_UNAVAILABLE: 409,
}


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope."""

    def __init__(
        self,
        *,
        status_code: int,
        error_code: ApiErrorCode,
        message: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Build an HTTP exception with standard detail structure."""
        super().__init__(
            status_code=status_code,
            detail={"error_code": str(error_code), "message": message},
            headers=headers,
        )


def error_from_outcome(error_code: ApiErrorCode, message: str) -> ApiError:
    """Build an ``ApiError`` for a failed domain outcome."""
    return ApiError(
        status_code=_STATUS_BY_CODE.get(error_code, 400),
        error_code=error_code,
        message=message,
    )


def to_error_payload(detail: Any, status_code: int) -> dict[str, str]:
    """Normalize HTTP exception detail into stable error payload."""
    if isinstance(detail, dict):
        error_code = str(detail.get("error_code") or f"HTTP_{status_code}")
        message = str(detail.get("message") or detail.get("detail") or "HTTP error")
        return {"error_code": error_code, "message": message}
    return {
        "error_code": f"HTTP_{status_code}",
        "message": str(detail or "HTTP error"),
    }
