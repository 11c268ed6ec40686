"""Python client for the authentication service that persists the unified session."""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Any, Callable

import requests

from authbridge.qr.handshake import QRHandshake
from authbridge.qr.http_store import HttpQRSessionGateway
from authbridge.qr.service import QRSessionService
from authbridge.qr.store import LocalQRSessionStore
from authbridge.session.storage import (
    SessionStorage,
    clear_session,
    load_session,
    persist_session,
)
from authbridge.session.unifier import AuthSession

LOGGER = logging.getLogger(__name__)


def _local_gateway(store_path: Path, site_url: str) -> QRSessionService:
    return QRSessionService(LocalQRSessionStore(store_path), site_url=site_url)


class AuthClientError(RuntimeError):
    """Service answered with the error envelope."""

    def __init__(self, status_code: int, error_code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message


class EmployeeAuthClient:
    """Drive every login channel against the HTTP API.

    Successful logins are written to ``storage`` under the well-known session
    key, replacing any previous login, and ``on_reload`` is invoked when the
    service asks the client to reload.
    """

    def __init__(
        self,
        base_url: str,
        storage: SessionStorage,
        *,
        timeout: float = 10.0,
        session: Any | None = None,
        on_reload: Callable[[], None] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._storage = storage
        self._timeout = timeout
        self._http = session or requests.Session()
        self._on_reload = on_reload

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._http.post(
            f"{self._base_url}{path}", json=payload, timeout=self._timeout
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            raise AuthClientError(
                response.status_code,
                str(body.get("error_code") or f"HTTP_{response.status_code}"),
                str(body.get("message") or "Request failed"),
            )
        return body

    def _complete(self, payload: dict[str, Any]) -> AuthSession:
        session = AuthSession.model_validate(payload)
        persist_session(self._storage, session)
        LOGGER.info("session_persisted", extra={"channel": session.auth_method})
        if payload.get("reload") and self._on_reload is not None:
            self._on_reload()
        return session

    def send_sms(self, phone: str) -> dict[str, Any]:
        return self._post("/api/auth/sms/send", {"phone": phone})

    def verify_sms(self, phone: str, code: str) -> AuthSession:
        return self._complete(self._post("/api/auth/sms/verify", {"phone": phone, "code": code}))

    def send_whatsapp(self, phone: str, template: str = "authentication") -> dict[str, Any]:
        return self._post("/api/auth/whatsapp/send", {"phone": phone, "type": template})

    def verify_whatsapp(self, phone: str, code: str) -> AuthSession:
        return self._complete(
            self._post("/api/auth/whatsapp/verify", {"phone": phone, "code": code})
        )

    def send_magic_link(self, email: str, redirect_to: str | None = None) -> dict[str, Any]:
        return self._post(
            "/api/auth/magic-link/send", {"email": email, "redirect_to": redirect_to}
        )

    def complete_magic_link(
        self, email: str, state: str, *, token: str = "", access_token: str = ""
    ) -> AuthSession:
        return self._complete(
            self._post(
                "/api/auth/magic-link/complete",
                {"email": email, "state": state, "token": token, "access_token": access_token},
            )
        )

    def login(self, username: str, password: str) -> AuthSession:
        return self._complete(
            self._post("/api/auth/login", {"username": username, "password": password})
        )

    def approve_qr(self, session_id: str, username: str, password: str) -> dict[str, Any]:
        """Scanning-device approval of another device's QR session."""
        return self._post(
            f"/api/auth/qr/sessions/{session_id}/authenticate",
            {"username": username, "password": password},
        )

    def approve_qr_locally(
        self, session_id: str, username: str, password: str, store_path: Path
    ) -> bool:
        """Approve a degraded session held in a client-local store on this machine."""
        payload = self._post("/api/auth/login", {"username": username, "password": password})
        employee = AuthSession.model_validate(payload).employee
        service = QRSessionService(LocalQRSessionStore(store_path), site_url=self._base_url)
        return service.authenticate(session_id, employee) is not None

    def qr_handshake(
        self,
        *,
        local_store_path: Path | None = None,
        site_url: str = "",
        tick_seconds: float = 1.0,
        poll_interval_seconds: float = 2.0,
        on_success: Callable[[AuthSession], None] | None = None,
        on_expired: Callable[[], None] | None = None,
    ) -> QRHandshake:
        """Build the initiating-device handshake, with a local fallback store if given."""
        fallback = None
        if local_store_path is not None:
            fallback = partial(_local_gateway, local_store_path, site_url or self._base_url)

        return QRHandshake(
            HttpQRSessionGateway(self._base_url, timeout=self._timeout, session=self._http),
            fallback_gateway=fallback,
            storage=self._storage,
            tick_seconds=tick_seconds,
            poll_interval_seconds=poll_interval_seconds,
            on_success=on_success,
            on_expired=on_expired,
            reload=self._on_reload,
        )

    def current_session(self) -> AuthSession | None:
        return load_session(self._storage)

    def sign_out(self, access_token: str | None = None) -> None:
        """Remove the stored session and tear down any provider session still held."""
        clear_session(self._storage)
        if access_token:
            try:
                self._post("/api/auth/logout", {"access_token": access_token})
            except (AuthClientError, requests.RequestException) as exc:
                LOGGER.warning("remote_logout_failed: %s", exc)
