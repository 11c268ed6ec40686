"""Cross-device QR session record and request models."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, Field

from authbridge.employees.models import EmployeeSnapshot


class QRStatus(StrEnum):
    WAITING = "waiting"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    CONSUMED = "consumed"


class QRSession(BaseModel):
    """Handshake record shared by the initiating and the scanning device."""

    session_id: str
    status: QRStatus = QRStatus.WAITING
    employee_data: EmployeeSnapshot | None = None
    created_at: float
    expires_at: float
    authenticated_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def time_left(self, now: float) -> int:
        return max(0, int(self.expires_at - now))


@dataclass(frozen=True)
class QRTicket:
    """What the initiating device needs to render and track one session."""

    session_id: str
    login_url: str
    image_url: str
    expires_at: float
    expires_in: int


class QRAuthenticateRequest(BaseModel):
    """Scanning-device credentials for approving a session."""

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


def new_session_id(now: float) -> str:
    """Opaque id built from the creation time plus randomness."""
    return f"qr_{int(now * 1000)}_{secrets.token_hex(6)}"
