from __future__ import annotations

import re
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi import FastAPI
from fastapi.routing import APIRoute
from starlette.requests import Request

from authbridge.api.errors import ApiError
from authbridge.auth.challenges import ChallengeService, InMemoryChallengeStore
from authbridge.auth.channels import MagicLinkSender, SmsSender, WhatsAppSender
from authbridge.auth.fallback import FallbackOrchestrator
from authbridge.auth.identity import IdentityResolver
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
from authbridge.auth.router import create_auth_router
from authbridge.auth.verification import VerificationEngine
from authbridge.session.unifier import SessionUnifier
from authbridge.transport.base import ProviderChain
from tests.fakes import FakeEmployeeStore, FakeIdentityProvider, FakeProvider, make_employee


def _request(client_ip: str = "127.0.0.1") -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [],
        "client": (client_ip, 1234),
    }
    return Request(scope)


def _limiter(tmp_path: Path, scope: str, max_attempts: int) -> AttemptRateLimiter:
    return AttemptRateLimiter(
        database_path=tmp_path / "state.db",
        scope=scope,
        max_attempts=max_attempts,
        window_seconds=300,
        lock_seconds=600,
    )


def _build_app(tmp_path: Path, *, sms_ok: bool = True) -> dict[str, Any]:
    store = FakeEmployeeStore([make_employee()])
    resolver = IdentityResolver(store)
    challenges = ChallengeService(InMemoryChallengeStore(), secret_key="k")
    idp = FakeIdentityProvider()
    sms_provider = FakeProvider(name="twilio_sms", ok=sms_ok)
    whatsapp_provider = FakeProvider(name="meta_whatsapp")
    mail_provider = FakeProvider(name="resend")
    magic = MagicLinkSender(
        resolver,
        challenges,
        idp,  # type: ignore[arg-type]
        ProviderChain("email", [mail_provider]),
        site_url="https://app.test",
    )
    app = FastAPI()
    app.include_router(
        create_auth_router(
            orchestrator=FallbackOrchestrator(
                SmsSender(resolver, challenges, ProviderChain("sms", [sms_provider])), magic
            ),
            whatsapp=WhatsAppSender(resolver, challenges, ProviderChain("whatsapp", [whatsapp_provider])),
            magic_link=magic,
            engine=VerificationEngine(resolver, challenges, idp, store),  # type: ignore[arg-type]
            unifier=SessionUnifier(idp),  # type: ignore[arg-type]
            identity_provider=idp,  # type: ignore[arg-type]
            login_limiter=_limiter(tmp_path, "login", 2),
            send_limiter=_limiter(tmp_path, "send", 5),
        )
    )
    return {
        "app": app,
        "idp": idp,
        "sms": sms_provider,
        "whatsapp": whatsapp_provider,
        "mail": mail_provider,
    }


def _route(app: FastAPI, path: str, method: str):
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path == path and method in route.methods:
            return route.endpoint
    raise AssertionError(f"Route {method} {path} not found")


def _code_from(body: str) -> str:
    match = re.search(r"\b(\d{6})\b", body)
    assert match is not None
    return match.group(1)


def test_sms_send_and_verify_returns_unified_session(tmp_path: Path) -> None:
    deps = _build_app(tmp_path)
    send = _route(deps["app"], "/api/auth/sms/send", "POST")
    verify = _route(deps["app"], "/api/auth/sms/verify", "POST")

    sent = send(PhoneSendRequest(phone="555-123-4567"), _request())
    code = _code_from(deps["sms"].sent[0].body)
    session = verify(CodeVerifyRequest(phone="+15551234567", code=code))

    assert sent.model_dump()["effective_channel"] == "sms"
    payload = session.model_dump()
    assert payload["auth_method"] == "sms"
    assert payload["employee"]["id"] == "emp-1"
    assert payload["storage_key"] == "employee_session"
    assert payload["reload"] is True


def test_sms_send_falls_back_to_magic_link(tmp_path: Path) -> None:
    deps = _build_app(tmp_path, sms_ok=False)
    send = _route(deps["app"], "/api/auth/sms/send", "POST")

    sent = send(PhoneSendRequest(phone="5551234567"), _request())

    assert sent.channel == "sms"
    assert sent.effective_channel == "magic_link"
    assert deps["mail"].sent[0].to == "ada@example.com"


def test_sms_send_unknown_employee_is_404(tmp_path: Path) -> None:
    deps = _build_app(tmp_path)
    send = _route(deps["app"], "/api/auth/sms/send", "POST")

    with pytest.raises(ApiError) as exc:
        send(PhoneSendRequest(phone="5550000000"), _request())

    assert exc.value.status_code == 404
    assert exc.value.detail["error_code"] == "AUTH_EMPLOYEE_NOT_FOUND"
    assert deps["sms"].sent == []


def test_send_throttling_rejects_sixth_send(tmp_path: Path) -> None:
    deps = _build_app(tmp_path)
    send = _route(deps["app"], "/api/auth/whatsapp/send", "POST")

    for _ in range(5):
        send(WhatsAppSendRequest(phone="5551234567"), _request())
    with pytest.raises(ApiError) as exc:
        send(WhatsAppSendRequest(phone="+1 555 123 4567"), _request())

    assert exc.value.status_code == 429
    assert len(deps["whatsapp"].sent) == 5


def test_whatsapp_wrong_code_is_400_with_attempts(tmp_path: Path) -> None:
    deps = _build_app(tmp_path)
    send = _route(deps["app"], "/api/auth/whatsapp/send", "POST")
    verify = _route(deps["app"], "/api/auth/whatsapp/verify", "POST")
    send(WhatsAppSendRequest(phone="5551234567"), _request())
    code = _code_from(deps["whatsapp"].sent[0].body)
    wrong = "000000" if code != "000000" else "111111"

    with pytest.raises(ApiError) as exc:
        verify(CodeVerifyRequest(phone="5551234567", code=wrong))

    assert exc.value.status_code == 400
    assert exc.value.detail == {
        "error_code": "AUTH_CODE_INVALID",
        "message": "Invalid code. 2 attempts remaining.",
    }


def test_magic_link_send_and_complete(tmp_path: Path) -> None:
    deps = _build_app(tmp_path)
    send = _route(deps["app"], "/api/auth/magic-link/send", "POST")
    complete = _route(deps["app"], "/api/auth/magic-link/complete", "POST")

    sent = send(MagicLinkSendRequest(email="Ada@Example.com"), _request())
    redirect_to = deps["idp"].links[0][1]
    state = parse_qs(urlsplit(redirect_to).query)["magic_state"][0]
    session = complete(MagicLinkCompleteRequest(email="ada@example.com", state=state, token="tok-1"))

    assert sent.expires_in == 3600
    assert session.auth_method == "magic_link"
    assert deps["idp"].signed_out == ["mail-tok-1"]


def test_login_success_and_lockout(tmp_path: Path) -> None:
    deps = _build_app(tmp_path)
    login = _route(deps["app"], "/api/auth/login", "POST")

    session = login(LoginRequest(username="ada", password="s3cret"), _request())
    for _ in range(2):
        with pytest.raises(ApiError) as failed:
            login(LoginRequest(username="ada", password="wrong"), _request())
        assert failed.value.status_code == 401
    with pytest.raises(ApiError) as locked:
        login(LoginRequest(username="ada", password="s3cret"), _request())

    assert session.auth_method == "password"
    assert locked.value.status_code == 429


def test_logout_signs_out_provider_session(tmp_path: Path) -> None:
    deps = _build_app(tmp_path)
    logout = _route(deps["app"], "/api/auth/logout", "POST")

    with_token = logout(LogoutRequest(access_token="mail-x"))
    without = logout(LogoutRequest())

    assert with_token.provider_signed_out is True
    assert deps["idp"].signed_out == ["mail-x"]
    assert without.model_dump() == {"status": "ok", "provider_signed_out": False}
