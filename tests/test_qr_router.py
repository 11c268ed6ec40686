from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.routing import APIRoute
from starlette.requests import Request

from authbridge.api.errors import ApiError
from authbridge.auth.challenges import ChallengeService, InMemoryChallengeStore
from authbridge.auth.identity import IdentityResolver
from authbridge.auth.rate_limiter import AttemptRateLimiter
from authbridge.auth.verification import VerificationEngine
from authbridge.qr.models import QRAuthenticateRequest, QRSession
from authbridge.qr.router import create_qr_router
from authbridge.qr.service import QRSessionService
from authbridge.qr.store import MemoryQRSessionStore, QRStoreUnavailable
from tests.fakes import Clock, FakeEmployeeStore, FakeIdentityProvider, make_employee


class _DownStore:
    def create(self, session: QRSession) -> None:
        raise QRStoreUnavailable("down")

    def get(self, session_id: str) -> QRSession | None:
        raise QRStoreUnavailable("down")


def _request() -> Request:
    return Request({"type": "http", "method": "POST", "path": "/", "headers": [], "client": ("10.0.0.9", 1)})


def _route(app: FastAPI, path: str, method: str):
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path == path and method in route.methods:
            return route.endpoint
    raise AssertionError(f"Route {method} {path} not found")


def _app(tmp_path: Path, clock: Clock, store: Any | None = None) -> FastAPI:
    employees = FakeEmployeeStore([make_employee()])
    engine = VerificationEngine(
        IdentityResolver(employees),
        ChallengeService(InMemoryChallengeStore(), secret_key="k"),
        FakeIdentityProvider(),  # type: ignore[arg-type]
        employees,
    )
    service = QRSessionService(
        store or MemoryQRSessionStore(), site_url="https://app.test", ttl_seconds=300, clock=clock
    )
    limiter = AttemptRateLimiter(
        database_path=tmp_path / "state.db",
        scope="login",
        max_attempts=5,
        window_seconds=300,
        lock_seconds=600,
    )
    app = FastAPI()
    app.include_router(create_qr_router(service, engine, limiter))
    return app


def test_qr_flow_create_poll_authenticate_claim(tmp_path: Path) -> None:
    app = _app(tmp_path, Clock())
    create = _route(app, "/api/auth/qr/sessions", "POST")
    status = _route(app, "/api/auth/qr/sessions/{session_id}", "GET")
    approve = _route(app, "/api/auth/qr/sessions/{session_id}/authenticate", "POST")
    claim = _route(app, "/api/auth/qr/sessions/{session_id}/claim", "POST")

    created = create()
    waiting = status(created.session_id)
    approved = approve(created.session_id, QRAuthenticateRequest(username="ada", password="s3cret"), _request())
    polled = status(created.session_id)
    claimed = claim(created.session_id)

    assert created.status == "waiting"
    assert created.login_url.endswith(f"/qr-login?session={created.session_id}")
    assert waiting.time_left == 300
    assert "employee_data" not in waiting.model_dump()
    assert approved.status == "authenticated"
    assert polled.status == "authenticated"
    assert claimed.employee_data.id == "emp-1"

    with pytest.raises(ApiError) as again:
        claim(created.session_id)
    assert again.value.status_code == 404


def test_qr_authenticate_rejects_bad_password_and_second_approval(tmp_path: Path) -> None:
    app = _app(tmp_path, Clock())
    created = _route(app, "/api/auth/qr/sessions", "POST")()
    approve = _route(app, "/api/auth/qr/sessions/{session_id}/authenticate", "POST")

    with pytest.raises(ApiError) as bad:
        approve(created.session_id, QRAuthenticateRequest(username="ada", password="nope"), _request())
    approve(created.session_id, QRAuthenticateRequest(username="ada", password="s3cret"), _request())
    with pytest.raises(ApiError) as twice:
        approve(created.session_id, QRAuthenticateRequest(username="ada", password="s3cret"), _request())

    assert bad.value.status_code == 401
    assert twice.value.status_code == 409
    assert twice.value.detail["error_code"] == "QR_SESSION_UNAVAILABLE"


def test_qr_expired_session_is_gone(tmp_path: Path) -> None:
    clock = Clock()
    app = _app(tmp_path, clock)
    created = _route(app, "/api/auth/qr/sessions", "POST")()
    approve = _route(app, "/api/auth/qr/sessions/{session_id}/authenticate", "POST")
    status = _route(app, "/api/auth/qr/sessions/{session_id}", "GET")

    clock.advance(301)
    with pytest.raises(ApiError) as exc:
        approve(created.session_id, QRAuthenticateRequest(username="ada", password="s3cret"), _request())
    with pytest.raises(ApiError) as missing:
        status(created.session_id)

    assert exc.value.status_code == 410
    assert exc.value.detail["error_code"] == "QR_SESSION_EXPIRED"
    assert missing.value.status_code == 404


def test_qr_delete_and_unknown_session(tmp_path: Path) -> None:
    app = _app(tmp_path, Clock())
    created = _route(app, "/api/auth/qr/sessions", "POST")()
    delete = _route(app, "/api/auth/qr/sessions/{session_id}", "DELETE")
    status = _route(app, "/api/auth/qr/sessions/{session_id}", "GET")

    assert delete(created.session_id).deleted is True
    assert delete(created.session_id).deleted is False
    with pytest.raises(ApiError) as exc:
        status(created.session_id)
    assert exc.value.detail == {"error_code": "QR_SESSION_NOT_FOUND", "message": "QR session not found"}


def test_qr_store_outage_is_503(tmp_path: Path) -> None:
    app = _app(tmp_path, Clock(), store=_DownStore())

    with pytest.raises(ApiError) as created:
        _route(app, "/api/auth/qr/sessions", "POST")()
    with pytest.raises(ApiError) as polled:
        _route(app, "/api/auth/qr/sessions/{session_id}", "GET")("qr_1")

    assert created.value.status_code == 503
    assert polled.value.status_code == 503
