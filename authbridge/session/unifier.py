"""Session unifier: one canonical session from any verified channel."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel

from authbridge.auth.identity_provider import IdentityProvider, IdentityProviderError
from authbridge.auth.verification import VerifiedIdentity
from authbridge.employees.models import Employee, EmployeeSnapshot

LOGGER = logging.getLogger(__name__)

AuthMethod = Literal["password", "sms", "whatsapp", "magic_link", "qr_code"]


class AuthSession(BaseModel):
    """Channel-agnostic session consumed by the rest of the application."""

    employee: EmployeeSnapshot
    auth_method: AuthMethod
    authenticated_at: str


def build_auth_session(
    employee: Employee | EmployeeSnapshot,
    method: AuthMethod,
    now: datetime | None = None,
) -> AuthSession:
    """Build the session record; pure data copy, no I/O."""
    snapshot = employee.snapshot() if isinstance(employee, Employee) else employee
    moment = now or datetime.now(timezone.utc)
    return AuthSession(
        employee=snapshot.model_copy(deep=True),
        auth_method=method,
        authenticated_at=moment.isoformat().replace("+00:00", "Z"),
    )


class SessionUnifier:
    """Build the session and discard any provider session used to get there."""

    def __init__(self, identity_provider: IdentityProvider) -> None:
        self._identity_provider = identity_provider

    def complete(self, identity: VerifiedIdentity) -> AuthSession:
        session = build_auth_session(identity.employee, identity.method)  # type: ignore[arg-type]
        if identity.provider_session is not None:
            try:
                self._identity_provider.sign_out(identity.provider_session)
            except IdentityProviderError as exc:
                LOGGER.warning(
                    "provider_sign_out_failed: %s",
                    exc,
                    extra={"provider": self._identity_provider.name, "employee_id": identity.employee.id},
                )
        LOGGER.info(
            "session_unified",
            extra={"channel": identity.method, "employee_id": identity.employee.id},
        )
        return session
