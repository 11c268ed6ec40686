"""Authentication API router for every login channel."""

from __future__ import annotations

from fastapi import APIRouter, Request

from authbridge.api.contracts import (
    ApiErrorResponse,
    AuthSessionResponse,
    ChannelSendResponse,
    LogoutResponse,
)
from authbridge.api.errors import ApiErrorCode, error_from_outcome
from authbridge.auth.addresses import normalize_phone
from authbridge.auth.channels import ChannelOutcome, MagicLinkSender, WhatsAppSender
from authbridge.auth.fallback import FallbackOrchestrator
from authbridge.auth.identity_provider import (
    IdentityProvider,
    IdentityProviderError,
    ProviderSession,
)
from authbridge.auth.models import (
    CodeVerifyRequest,
    LoginRequest,
    LogoutRequest,
    MagicLinkCompleteRequest,
    MagicLinkSendRequest,
    PhoneSendRequest,
    WhatsAppSendRequest,
)
from authbridge.auth.rate_limiter import AttemptRateLimiter
from authbridge.auth.verification import VerificationEngine, VerificationOutcome
from authbridge.session.unifier import SessionUnifier

_SEND_ERRORS = {
    400: {"model": ApiErrorResponse},
    404: {"model": ApiErrorResponse},
    429: {"model": ApiErrorResponse},
    502: {"model": ApiErrorResponse},
    503: {"model": ApiErrorResponse},
}
_VERIFY_ERRORS = {
    400: {"model": ApiErrorResponse},
    401: {"model": ApiErrorResponse},
    404: {"model": ApiErrorResponse},
}


def _client_ip(request: Request) -> str:
    return (request.client.host if request.client else "") or "unknown"


def _phone_principal(raw_phone: str, default_country_code: str) -> str:
    """Throttle key for a phone; unparseable input is keyed as typed."""
    try:
        return normalize_phone(raw_phone, default_country_code)
    except ValueError:
        return raw_phone.strip()


def _send_response(outcome: ChannelOutcome) -> ChannelSendResponse:
    if not outcome.ok:
        raise error_from_outcome(
            outcome.error_code or ApiErrorCode.AUTH_DELIVERY_FAILED, outcome.message
        )
    return ChannelSendResponse(
        channel=outcome.channel,
        effective_channel=outcome.effective_channel or outcome.channel,
        message=outcome.message,
        expires_in=outcome.expires_in,
    )


def create_auth_router(
    *,
    orchestrator: FallbackOrchestrator,
    whatsapp: WhatsAppSender,
    magic_link: MagicLinkSender,
    engine: VerificationEngine,
    unifier: SessionUnifier,
    identity_provider: IdentityProvider,
    login_limiter: AttemptRateLimiter,
    send_limiter: AttemptRateLimiter,
    default_country_code: str = "+1",
) -> APIRouter:
    """Build authentication router with send/verify endpoints per channel."""
    router = APIRouter(tags=["auth"])

    def session_response(outcome: VerificationOutcome) -> AuthSessionResponse:
        if not outcome.ok or outcome.identity is None:
            raise error_from_outcome(
                outcome.error_code or ApiErrorCode.AUTH_INVALID_CREDENTIALS, outcome.message
            )
        session = unifier.complete(outcome.identity)
        return AuthSessionResponse(**session.model_dump())

    def throttle_send(principal: str, request: Request) -> None:
        client_ip = _client_ip(request)
        send_limiter.assert_allowed(principal=principal, client_ip=client_ip)
        send_limiter.record_attempt(principal=principal, client_ip=client_ip)

    @router.post(
        "/api/auth/sms/send", response_model=ChannelSendResponse, responses=_SEND_ERRORS
    )
    def send_sms(req: PhoneSendRequest, request: Request) -> ChannelSendResponse:
        """Send an SMS code, falling back to a magic link when SMS is unavailable."""
        throttle_send(_phone_principal(req.phone, default_country_code), request)
        return _send_response(orchestrator.send_sms(req.phone))

    @router.post(
        "/api/auth/sms/verify", response_model=AuthSessionResponse, responses=_VERIFY_ERRORS
    )
    def verify_sms(req: CodeVerifyRequest) -> AuthSessionResponse:
        """Verify an SMS code and return the unified session."""
        return session_response(engine.verify_sms(req.phone, req.code))

    @router.post(
        "/api/auth/whatsapp/send", response_model=ChannelSendResponse, responses=_SEND_ERRORS
    )
    def send_whatsapp(req: WhatsAppSendRequest, request: Request) -> ChannelSendResponse:
        """Send a WhatsApp code through the provider chain."""
        throttle_send(_phone_principal(req.phone, default_country_code), request)
        return _send_response(whatsapp.send(req.phone, req.type))

    @router.post(
        "/api/auth/whatsapp/verify",
        response_model=AuthSessionResponse,
        responses=_VERIFY_ERRORS,
    )
    def verify_whatsapp(req: CodeVerifyRequest) -> AuthSessionResponse:
        """Verify a WhatsApp code and return the unified session."""
        return session_response(engine.verify_whatsapp(req.phone, req.code))

    @router.post(
        "/api/auth/magic-link/send", response_model=ChannelSendResponse, responses=_SEND_ERRORS
    )
    def send_magic_link(req: MagicLinkSendRequest, request: Request) -> ChannelSendResponse:
        """Email a single-use login link."""
        throttle_send(req.email.strip().lower(), request)
        return _send_response(magic_link.send(req.email, req.redirect_to))

    @router.post(
        "/api/auth/magic-link/complete",
        response_model=AuthSessionResponse,
        responses=_VERIFY_ERRORS,
    )
    def complete_magic_link(req: MagicLinkCompleteRequest) -> AuthSessionResponse:
        """Finish the magic-link return trip and return the unified session."""
        return session_response(
            engine.complete_magic_link(
                req.email, req.state, token=req.token, access_token=req.access_token
            )
        )

    @router.post(
        "/api/auth/login",
        response_model=AuthSessionResponse,
        responses={401: {"model": ApiErrorResponse}, 429: {"model": ApiErrorResponse}},
    )
    def login(req: LoginRequest, request: Request) -> AuthSessionResponse:
        """Authenticate by username and password."""
        client_ip = _client_ip(request)
        login_limiter.assert_allowed(principal=req.username, client_ip=client_ip)
        outcome = engine.verify_password(req.username, req.password)
        if outcome.error_code == ApiErrorCode.AUTH_INVALID_CREDENTIALS:
            login_limiter.record_attempt(principal=req.username, client_ip=client_ip)
        elif outcome.ok:
            login_limiter.reset(principal=req.username, client_ip=client_ip)
        return session_response(outcome)

    @router.post("/api/auth/logout", response_model=LogoutResponse)
    def logout(req: LogoutRequest) -> LogoutResponse:
        """Tear down a provider-level session when the client still holds one."""
        if not req.access_token:
            return LogoutResponse(status="ok")
        try:
            identity_provider.sign_out(ProviderSession(access_token=req.access_token))
        except IdentityProviderError:
            return LogoutResponse(status="ok", provider_signed_out=False)
        return LogoutResponse(status="ok", provider_signed_out=True)

    return router
