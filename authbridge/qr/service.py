"""QR session lifecycle over any session store."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol
from urllib.parse import quote

from authbridge.employees.models import Employee, EmployeeSnapshot
from authbridge.qr.models import QRSession, QRStatus, QRTicket, new_session_id
from authbridge.qr.store import QRSessionStore

LOGGER = logging.getLogger(__name__)

DEFAULT_IMAGE_URL_TEMPLATE = "https://api.qrserver.com/v1/create-qr-code/?size=300x300&data={data}"


class QRSessionGateway(Protocol):
    """What the initiating device needs from a session backend."""

    @property
    def degraded(self) -> bool:
        """True when sessions cannot be seen from other devices."""

    def create(self) -> QRTicket:
        """Allocate a new waiting session."""

    def get(self, session_id: str) -> QRSession | None:
        """Return the session with logical expiry applied."""

    def claim(self, session_id: str) -> QRSession | None:
        """Take the authenticated session exactly once."""

    def delete(self, session_id: str) -> bool:
        """Discard the session."""


class QRSessionService:
    """Create, read, authenticate and claim cross-device sessions."""

    def __init__(
        self,
        store: QRSessionStore,
        *,
        site_url: str,
        ttl_seconds: int = 300,
        image_url_template: str = DEFAULT_IMAGE_URL_TEMPLATE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._site_url = site_url.rstrip("/")
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._image_url_template = image_url_template
        self._clock = clock

    @property
    def degraded(self) -> bool:
        return bool(getattr(self._store, "degraded", False))

    def now(self) -> float:
        return self._clock()

    def login_url(self, session_id: str) -> str:
        return f"{self._site_url}/qr-login?session={quote(session_id, safe='')}"

    def create(self) -> QRTicket:
        """Allocate and store a waiting session; raises ``QRStoreUnavailable``."""
        now = self._clock()
        session = QRSession(
            session_id=new_session_id(now),
            status=QRStatus.WAITING,
            created_at=now,
            expires_at=now + self._ttl_seconds,
        )
        self._store.create(session)
        login_url = self.login_url(session.session_id)
        LOGGER.info("qr_session_created", extra={"session_id": session.session_id})
        return QRTicket(
            session_id=session.session_id,
            login_url=login_url,
            image_url=self._image_url_template.format(data=quote(login_url, safe="")),
            expires_at=session.expires_at,
            expires_in=self._ttl_seconds,
        )

    def get(self, session_id: str) -> QRSession | None:
        """Return the session; a waiting one past ``expires_at`` reads as expired and is dropped."""
        session = self._store.get(session_id)
        if session is None:
            return None
        if session.status == QRStatus.WAITING and session.is_expired(self._clock()):
            self._store.delete(session_id)
            return session.model_copy(update={"status": QRStatus.EXPIRED})
        return session

    def authenticate(
        self, session_id: str, employee: Employee | EmployeeSnapshot
    ) -> QRSession | None:
        """Write the scanning device's verified employee; None if the session is not live."""
        snapshot = employee.snapshot() if isinstance(employee, Employee) else employee
        updated = self._store.mark_authenticated(session_id, snapshot, self._clock())
        if updated is not None:
            LOGGER.info(
                "qr_session_authenticated",
                extra={"session_id": session_id, "employee_id": snapshot.id},
            )
        return updated

    def claim(self, session_id: str) -> QRSession | None:
        claimed = self._store.claim(session_id)
        if claimed is not None:
            LOGGER.info("qr_session_claimed", extra={"session_id": session_id})
        return claimed

    def delete(self, session_id: str) -> bool:
        return self._store.delete(session_id)
