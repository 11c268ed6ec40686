"""Identity resolver gating every channel before any code is sent."""

from __future__ import annotations

import logging
from typing import Protocol

from authbridge.core.logging import mask_address
from authbridge.employees.models import Employee
from authbridge.employees.repository import EmployeeLookupError

LOGGER = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = (
    "No active employee found with this {kind}. Please contact your administrator."
)


class EmployeeStoreProtocol(Protocol):
    """Read surface of the employee store used by the resolver."""

    def find_active_by_phone(self, phone: str) -> Employee | None:
        """Return active employee by E.164 phone."""

    def find_active_by_email(self, email: str) -> Employee | None:
        """Return active employee by lowercase email."""


class IdentityLookupError(RuntimeError):
    """Transient failure while resolving an address; safe to retry."""


def not_found_message(address: str) -> str:
    """User-facing wording shared by not-found and lookup failures."""
    kind = "email address" if "@" in address else "phone number"
    return NOT_FOUND_MESSAGE.format(kind=kind)


class IdentityResolver:
    """Resolve a normalized phone or email to exactly one active employee."""

    def __init__(self, store: EmployeeStoreProtocol) -> None:
        self._store = store

    def resolve(self, address: str) -> Employee | None:
        """Return the active employee at ``address`` or ``None`` when not found.

        ``address`` must already be normalized: E.164 for phones, trimmed
        lowercase for emails. Raises ``IdentityLookupError`` when the store
        itself fails, which callers keep distinct from a ``None`` result.
        """
        try:
            if "@" in address:
                employee = self._store.find_active_by_email(address)
            else:
                employee = self._store.find_active_by_phone(address)
        except EmployeeLookupError as exc:
            LOGGER.warning("identity_lookup_failed: %s", mask_address(address))
            raise IdentityLookupError(str(exc)) from exc

        if employee is None or not employee.is_active:
            LOGGER.info("identity_not_found: %s", mask_address(address))
            return None
        return employee
