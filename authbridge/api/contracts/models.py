"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from authbridge.employees.models import EmployeeSnapshot


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    error_code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class ChannelSendResponse(BaseModel):
    """Result of a code or link send through one channel."""

    success: bool = True
    channel: str
    effective_channel: str = Field(
        description="Channel that actually delivered; differs after a fallback"
    )
    message: str
    expires_in: int = 0


class AuthSessionResponse(BaseModel):
    """Canonical session returned by every successful authentication path."""

    employee: EmployeeSnapshot
    auth_method: Literal["password", "sms", "whatsapp", "magic_link", "qr_code"]
    authenticated_at: str
    storage_key: str = "employee_session"
    reload: bool = True


class LogoutResponse(BaseModel):
    """Logout response payload."""

    status: Literal["ok"]
    provider_signed_out: bool = False


class QRSessionCreatedResponse(BaseModel):
    """Freshly allocated cross-device session."""

    session_id: str
    status: str
    login_url: str
    image_url: str
    expires_at: float
    expires_in: int


class QRSessionStatusResponse(BaseModel):
    """Polled view of a cross-device session; never carries employee data."""

    session_id: str
    status: str
    expires_at: float
    time_left: int


class QRAuthenticateResponse(BaseModel):
    """Scanning-device confirmation that the session was authenticated."""

    session_id: str
    status: Literal["authenticated"]


class QRClaimResponse(BaseModel):
    """Employee snapshot relayed to the initiating device exactly once."""

    session_id: str
    employee_data: EmployeeSnapshot


class QRSessionDeletedResponse(BaseModel):
    """Delete endpoint response payload."""

    session_id: str
    deleted: bool
