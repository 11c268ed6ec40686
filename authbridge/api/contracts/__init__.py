"""Public API response contracts."""

from authbridge.api.contracts.models import (
    ApiErrorResponse,
    AuthSessionResponse,
    ChannelSendResponse,
    HealthResponse,
    LogoutResponse,
    QRAuthenticateResponse,
    QRClaimResponse,
    QRSessionCreatedResponse,
    QRSessionDeletedResponse,
    QRSessionStatusResponse,
)

__all__ = [
    "ApiErrorResponse",
    "AuthSessionResponse",
    "ChannelSendResponse",
    "HealthResponse",
    "LogoutResponse",
    "QRAuthenticateResponse",
    "QRClaimResponse",
    "QRSessionCreatedResponse",
    "QRSessionDeletedResponse",
    "QRSessionStatusResponse",
]
