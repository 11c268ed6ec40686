"""QR session gateway that talks to the service over HTTP."""

from __future__ import annotations

import logging
from typing import Any

import requests

from authbridge.qr.models import QRSession, QRStatus, QRTicket
from authbridge.qr.store import QRStoreUnavailable

LOGGER = logging.getLogger(__name__)


class HttpQRSessionGateway:
    """Initiating-device view of the shared session store behind the API."""

    degraded = False

    def __init__(self, base_url: str, *, timeout: float = 10.0, session: Any | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http = session or requests.Session()

    def _url(self, session_id: str = "", action: str = "") -> str:
        url = f"{self._base_url}/api/auth/qr/sessions"
        if session_id:
            url = f"{url}/{session_id}"
        if action:
            url = f"{url}/{action}"
        return url

    def _call(self, method: str, url: str) -> Any:
        """Send request; returns the response, raising ``QRStoreUnavailable`` on outages."""
        try:
            response = self._http.request(method, url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise QRStoreUnavailable(f"QR service unreachable: {exc}") from exc
        if response.status_code >= 500:
            raise QRStoreUnavailable(f"QR service returned HTTP {response.status_code}")
        return response

    def create(self) -> QRTicket:
        response = self._call("POST", self._url())
        response.raise_for_status()
        payload = response.json()
        return QRTicket(
            session_id=str(payload["session_id"]),
            login_url=str(payload["login_url"]),
            image_url=str(payload.get("image_url") or ""),
            expires_at=float(payload["expires_at"]),
            expires_in=int(payload.get("expires_in") or 0),
        )

    def get(self, session_id: str) -> QRSession | None:
        response = self._call("GET", self._url(session_id))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        payload = response.json()
        return QRSession(
            session_id=str(payload["session_id"]),
            status=QRStatus(payload["status"]),
            created_at=0.0,
            expires_at=float(payload["expires_at"]),
        )

    def claim(self, session_id: str) -> QRSession | None:
        response = self._call("POST", self._url(session_id, "claim"))
        if response.status_code in (404, 409, 410):
            return None
        response.raise_for_status()
        payload = response.json()
        return QRSession(
            session_id=str(payload["session_id"]),
            status=QRStatus.AUTHENTICATED,
            employee_data=payload["employee_data"],
            created_at=0.0,
            expires_at=0.0,
        )

    def delete(self, session_id: str) -> bool:
        response = self._call("DELETE", self._url(session_id))
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return bool(response.json().get("deleted"))
