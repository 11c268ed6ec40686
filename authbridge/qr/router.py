"""QR handshake API router."""

from __future__ import annotations

from fastapi import APIRouter, Request

from authbridge.api.contracts import (
    ApiErrorResponse,
    QRAuthenticateResponse,
    QRClaimResponse,
    QRSessionCreatedResponse,
    QRSessionDeletedResponse,
    QRSessionStatusResponse,
)
from authbridge.api.errors import ApiError, ApiErrorCode, error_from_outcome
from authbridge.auth.rate_limiter import AttemptRateLimiter
from authbridge.auth.verification import VerificationEngine
from authbridge.qr.models import QRAuthenticateRequest, QRSession, QRStatus
from authbridge.qr.service import QRSessionService
from authbridge.qr.store import QRStoreUnavailable


def _unavailable() -> ApiError:
    return ApiError(
        status_code=503,
        error_code=ApiErrorCode.QR_SESSION_UNAVAILABLE,
        message="QR session store is unavailable",
    )


def _not_live(session: QRSession | None) -> ApiError:
    """Explain why a session cannot take the requested transition."""
    if session is None:
        return error_from_outcome(ApiErrorCode.QR_SESSION_NOT_FOUND, "QR session not found")
    if session.status == QRStatus.EXPIRED:
        return error_from_outcome(ApiErrorCode.QR_SESSION_EXPIRED, "QR code has expired")
    return error_from_outcome(
        ApiErrorCode.QR_SESSION_UNAVAILABLE, f"QR session is {session.status.value}"
    )


def create_qr_router(
    service: QRSessionService,
    engine: VerificationEngine,
    login_limiter: AttemptRateLimiter,
) -> APIRouter:
    """Build router for the cross-device QR handshake."""
    router = APIRouter(tags=["qr"])

    def read(session_id: str) -> QRSession | None:
        try:
            return service.get(session_id)
        except QRStoreUnavailable as exc:
            raise _unavailable() from exc

    @router.post(
        "/api/auth/qr/sessions",
        response_model=QRSessionCreatedResponse,
        responses={503: {"model": ApiErrorResponse}},
    )
    def create_session() -> QRSessionCreatedResponse:
        """Allocate a waiting session for the initiating device."""
        try:
            ticket = service.create()
        except QRStoreUnavailable as exc:
            raise _unavailable() from exc
        return QRSessionCreatedResponse(
            session_id=ticket.session_id,
            status=QRStatus.WAITING.value,
            login_url=ticket.login_url,
            image_url=ticket.image_url,
            expires_at=ticket.expires_at,
            expires_in=ticket.expires_in,
        )

    @router.get(
        "/api/auth/qr/sessions/{session_id}",
        response_model=QRSessionStatusResponse,
        responses={404: {"model": ApiErrorResponse}, 503: {"model": ApiErrorResponse}},
    )
    def get_session(session_id: str) -> QRSessionStatusResponse:
        """Return session status without employee data."""
        session = read(session_id)
        if session is None:
            raise _not_live(None)
        return QRSessionStatusResponse(
            session_id=session.session_id,
            status=session.status.value,
            expires_at=session.expires_at,
            time_left=session.time_left(service.now()),
        )

    @router.post(
        "/api/auth/qr/sessions/{session_id}/authenticate",
        response_model=QRAuthenticateResponse,
        responses={
            401: {"model": ApiErrorResponse},
            404: {"model": ApiErrorResponse},
            409: {"model": ApiErrorResponse},
            410: {"model": ApiErrorResponse},
            429: {"model": ApiErrorResponse},
        },
    )
    def authenticate_session(
        session_id: str, req: QRAuthenticateRequest, request: Request
    ) -> QRAuthenticateResponse:
        """Scanning device approves the session with its own credentials."""
        client_ip = (request.client.host if request.client else "") or "unknown"
        login_limiter.assert_allowed(principal=req.username, client_ip=client_ip)
        outcome = engine.verify_password(req.username, req.password)
        if not outcome.ok or outcome.identity is None:
            if outcome.error_code == ApiErrorCode.AUTH_INVALID_CREDENTIALS:
                login_limiter.record_attempt(principal=req.username, client_ip=client_ip)
            raise error_from_outcome(
                outcome.error_code or ApiErrorCode.AUTH_INVALID_CREDENTIALS, outcome.message
            )
        login_limiter.reset(principal=req.username, client_ip=client_ip)

        try:
            updated = service.authenticate(session_id, outcome.identity.employee)
        except QRStoreUnavailable as exc:
            raise _unavailable() from exc
        if updated is None:
            raise _not_live(read(session_id))
        return QRAuthenticateResponse(session_id=session_id, status="authenticated")

    @router.post(
        "/api/auth/qr/sessions/{session_id}/claim",
        response_model=QRClaimResponse,
        responses={
            404: {"model": ApiErrorResponse},
            409: {"model": ApiErrorResponse},
            410: {"model": ApiErrorResponse},
        },
    )
    def claim_session(session_id: str) -> QRClaimResponse:
        """Initiating device takes the authenticated employee exactly once."""
        try:
            claimed = service.claim(session_id)
        except QRStoreUnavailable as exc:
            raise _unavailable() from exc
        if claimed is None or claimed.employee_data is None:
            raise _not_live(read(session_id))
        return QRClaimResponse(session_id=session_id, employee_data=claimed.employee_data)

    @router.delete(
        "/api/auth/qr/sessions/{session_id}",
        response_model=QRSessionDeletedResponse,
        responses={503: {"model": ApiErrorResponse}},
    )
    def delete_session(session_id: str) -> QRSessionDeletedResponse:
        """Discard a session on refresh or navigation away."""
        try:
            deleted = service.delete(session_id)
        except QRStoreUnavailable as exc:
            raise _unavailable() from exc
        return QRSessionDeletedResponse(session_id=session_id, deleted=deleted)

    return router
