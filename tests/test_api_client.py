from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
import requests

from authbridge.client.api_client import AuthClientError, EmployeeAuthClient
from authbridge.qr.http_store import HttpQRSessionGateway
from authbridge.qr.models import QRStatus
from authbridge.qr.service import QRSessionService
from authbridge.qr.store import LocalQRSessionStore, QRStoreUnavailable
from authbridge.session.storage import MemorySessionStorage, load_session
from authbridge.session.unifier import build_auth_session
from tests.fakes import make_employee


class _Response:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no body")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


@dataclass
class _Http:
    """Requests session double answering by (method, path suffix)."""

    answers: dict[tuple[str, str], _Response] = field(default_factory=dict)
    calls: list[tuple[str, str, Any]] = field(default_factory=list)
    error: Exception | None = None

    def _answer(self, method: str, url: str, payload: Any) -> _Response:
        self.calls.append((method, url, payload))
        if self.error is not None:
            raise self.error
        for (answer_method, suffix), response in self.answers.items():
            if answer_method == method and url.endswith(suffix):
                return response
        return _Response(404, {"error_code": "HTTP_404", "message": "Not Found"})

    def post(self, url: str, json: Any = None, timeout: float = 0) -> _Response:
        return self._answer("POST", url, json)

    def request(self, method: str, url: str, timeout: float = 0) -> _Response:
        return self._answer(method, url, None)


def _session_payload(method: str = "password") -> dict[str, Any]:
    payload = build_auth_session(make_employee(), method).model_dump(mode="json")  # type: ignore[arg-type]
    payload.update({"storage_key": "employee_session", "reload": True})
    return payload


def test_login_persists_session_and_reloads() -> None:
    http = _Http(answers={("POST", "/api/auth/login"): _Response(200, _session_payload())})
    storage = MemorySessionStorage()
    reloads: list[bool] = []
    client = EmployeeAuthClient(
        "https://api.test/", storage, session=http, on_reload=lambda: reloads.append(True)
    )

    session = client.login("ada", "s3cret")

    assert http.calls[0][1] == "https://api.test/api/auth/login"
    assert load_session(storage) == session
    assert client.current_session() == session
    assert reloads == [True]


def test_error_envelope_becomes_client_error() -> None:
    http = _Http(
        answers={
            ("POST", "/api/auth/sms/send"): _Response(
                404,
                {"error_code": "AUTH_EMPLOYEE_NOT_FOUND", "message": "No active employee found"},
            )
        }
    )
    client = EmployeeAuthClient("https://api.test", MemorySessionStorage(), session=http)

    with pytest.raises(AuthClientError) as exc:
        client.send_sms("5550000000")

    assert exc.value.status_code == 404
    assert exc.value.error_code == "AUTH_EMPLOYEE_NOT_FOUND"


def test_new_login_replaces_previous_session() -> None:
    http = _Http(
        answers={
            ("POST", "/api/auth/login"): _Response(200, _session_payload("password")),
            ("POST", "/api/auth/whatsapp/verify"): _Response(200, _session_payload("whatsapp")),
        }
    )
    storage = MemorySessionStorage()
    client = EmployeeAuthClient("https://api.test", storage, session=http)

    client.login("ada", "s3cret")
    client.verify_whatsapp("+15551234567", "123456")

    assert load_session(storage).auth_method == "whatsapp"  # type: ignore[union-attr]


def test_sign_out_clears_storage_even_when_remote_logout_fails() -> None:
    http = _Http(answers={("POST", "/api/auth/login"): _Response(200, _session_payload())})
    storage = MemorySessionStorage()
    client = EmployeeAuthClient("https://api.test", storage, session=http)
    client.login("ada", "s3cret")
    http.error = requests.ConnectionError("offline")

    client.sign_out(access_token="mail-x")

    assert load_session(storage) is None
    assert http.calls[-1][2] == {"access_token": "mail-x"}


def test_approve_qr_locally_authenticates_degraded_session(tmp_path: Path) -> None:
    store_path = tmp_path / "qr.json"
    ticket = QRSessionService(LocalQRSessionStore(store_path), site_url="https://app.test").create()
    http = _Http(answers={("POST", "/api/auth/login"): _Response(200, _session_payload())})
    client = EmployeeAuthClient("https://api.test", MemorySessionStorage(), session=http)

    approved = client.approve_qr_locally(ticket.session_id, "ada", "s3cret", store_path)

    stored = LocalQRSessionStore(store_path).get(ticket.session_id)
    assert approved is True
    assert stored is not None and stored.status == QRStatus.AUTHENTICATED


def test_http_gateway_maps_outages_and_missing_sessions() -> None:
    http = _Http(answers={("GET", "/qr_gone"): _Response(404, {})})
    gateway = HttpQRSessionGateway("https://api.test", session=http)

    assert gateway.get("qr_gone") is None
    assert gateway.claim("qr_gone") is None

    http.answers[("POST", "/api/auth/qr/sessions")] = _Response(503, {})
    with pytest.raises(QRStoreUnavailable):
        gateway.create()

    http.error = requests.ConnectionError("refused")
    with pytest.raises(QRStoreUnavailable):
        gateway.get("qr_1")
