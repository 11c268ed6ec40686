"""Verification engine turning submitted codes, links and credentials into identities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from authbridge.api.errors import ApiErrorCode
from authbridge.auth.addresses import normalize_email, normalize_phone
from authbridge.auth.challenges import ChallengeService, VerifyResult, VerifyStatus
from authbridge.auth.channels import (
    MAGIC_LINK,
    SMS,
    SMS_BACKEND_LOCAL,
    SMS_BACKEND_PROVIDER,
    WHATSAPP,
)
from authbridge.auth.identity import IdentityLookupError, IdentityResolver, not_found_message
from authbridge.auth.identity_provider import (
    IdentityProvider,
    IdentityProviderError,
    ProviderSession,
)
from authbridge.core.logging import mask_address
from authbridge.core.security import verify_password
from authbridge.employees.models import Employee
from authbridge.employees.repository import EmployeeLookupError

LOGGER = logging.getLogger(__name__)

PASSWORD = "password"
INVALID_CREDENTIALS_MESSAGE = "Invalid username or password"
INVALID_MAGIC_LINK_MESSAGE = "This login link is invalid or has expired. Please request a new link."

_CODE_ERRORS: dict[VerifyStatus, ApiErrorCode] = {
    VerifyStatus.INVALID: ApiErrorCode.AUTH_CODE_INVALID,
    VerifyStatus.EXPIRED: ApiErrorCode.AUTH_CODE_EXPIRED,
    VerifyStatus.EXHAUSTED: ApiErrorCode.AUTH_CODE_EXHAUSTED,
    VerifyStatus.NOT_FOUND: ApiErrorCode.AUTH_CODE_NOT_FOUND,
}


class CredentialStoreProtocol(Protocol):
    def find_active_by_username(self, username: str) -> Employee | None:
        """Return active employee by username."""


@dataclass(frozen=True)
class VerifiedIdentity:
    """Employee proven by one channel, plus any provider session to discard."""

    employee: Employee
    method: str
    provider_session: ProviderSession | None = None


@dataclass(frozen=True)
class VerificationOutcome:
    ok: bool
    message: str
    identity: VerifiedIdentity | None = None
    error_code: ApiErrorCode | None = None
    attempts_left: int = 0

    @classmethod
    def failed(
        cls, error_code: ApiErrorCode, message: str, *, attempts_left: int = 0
    ) -> "VerificationOutcome":
        return cls(ok=False, message=message, error_code=error_code, attempts_left=attempts_left)


class VerificationEngine:
    """Validate submitted proofs and resolve them to an active employee."""

    def __init__(
        self,
        resolver: IdentityResolver,
        challenges: ChallengeService,
        identity_provider: IdentityProvider,
        credentials: CredentialStoreProtocol,
        *,
        default_country_code: str = "+1",
        sms_backend: str = SMS_BACKEND_LOCAL,
    ) -> None:
        self._resolver = resolver
        self._challenges = challenges
        self._identity_provider = identity_provider
        self._credentials = credentials
        self._default_country_code = default_country_code
        self._sms_backend = sms_backend

    def _discard(self, session: ProviderSession | None) -> None:
        if session is None:
            return
        try:
            self._identity_provider.sign_out(session)
        except IdentityProviderError as exc:
            LOGGER.warning(
                "provider_sign_out_failed: %s",
                exc,
                extra={"provider": self._identity_provider.name},
            )

    def _identity_for(
        self, address: str, method: str, session: ProviderSession | None = None
    ) -> VerificationOutcome:
        """Re-read the employee after a successful check."""
        try:
            employee = self._resolver.resolve(address)
        except IdentityLookupError:
            self._discard(session)
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_LOOKUP_FAILED, not_found_message(address)
            )
        if employee is None:
            self._discard(session)
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_EMPLOYEE_NOT_FOUND, not_found_message(address)
            )
        LOGGER.info(
            "identity_verified",
            extra={"channel": method, "employee_id": employee.id},
        )
        return VerificationOutcome(
            ok=True,
            message="Authenticated",
            identity=VerifiedIdentity(employee=employee, method=method, provider_session=session),
        )

    @staticmethod
    def _code_failure(result: VerifyResult) -> VerificationOutcome:
        return VerificationOutcome.failed(
            _CODE_ERRORS[result.status], result.message, attempts_left=result.attempts_left
        )

    def _verify_local_code(self, channel: str, raw_phone: str, code: str) -> VerificationOutcome:
        try:
            phone = normalize_phone(raw_phone, self._default_country_code)
        except ValueError as exc:
            return VerificationOutcome.failed(ApiErrorCode.AUTH_INVALID_PHONE, str(exc))
        result = self._challenges.verify(channel, phone, code)
        if not result.ok:
            return self._code_failure(result)
        return self._identity_for(phone, channel)

    def verify_sms(self, raw_phone: str, code: str) -> VerificationOutcome:
        if self._sms_backend != SMS_BACKEND_PROVIDER:
            return self._verify_local_code(SMS, raw_phone, code)

        try:
            phone = normalize_phone(raw_phone, self._default_country_code)
        except ValueError as exc:
            return VerificationOutcome.failed(ApiErrorCode.AUTH_INVALID_PHONE, str(exc))
        try:
            session = self._identity_provider.verify_phone_otp(phone, code.strip())
        except IdentityProviderError as exc:
            LOGGER.info(
                "provider_phone_otp_rejected: %s %s",
                mask_address(phone),
                exc,
                extra={"channel": SMS, "provider": self._identity_provider.name},
            )
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_CODE_INVALID, "Invalid SMS code. Please try again."
            )
        return self._identity_for(phone, SMS, session)

    def verify_whatsapp(self, raw_phone: str, code: str) -> VerificationOutcome:
        return self._verify_local_code(WHATSAPP, raw_phone, code)

    def complete_magic_link(
        self, raw_email: str, state: str, *, token: str = "", access_token: str = ""
    ) -> VerificationOutcome:
        """Finish the magic-link return trip.

        The provider proof (a link ``token`` or an already active provider
        ``access_token``) must belong to ``raw_email``, and ``state`` must match
        the pending record written when the link was sent.
        """
        try:
            email = normalize_email(raw_email)
        except ValueError as exc:
            return VerificationOutcome.failed(ApiErrorCode.AUTH_INVALID_EMAIL, str(exc))
        if not token and not access_token:
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_MAGIC_LINK_INVALID, INVALID_MAGIC_LINK_MESSAGE
            )

        try:
            if token:
                session = self._identity_provider.verify_email_token(email, token)
            else:
                session = self._identity_provider.get_session(access_token)
        except IdentityProviderError as exc:
            LOGGER.info(
                "magic_link_rejected: %s %s",
                mask_address(email),
                exc,
                extra={"channel": MAGIC_LINK, "provider": self._identity_provider.name},
            )
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_MAGIC_LINK_INVALID, INVALID_MAGIC_LINK_MESSAGE
            )

        if session.email != email:
            self._discard(session)
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_MAGIC_LINK_INVALID, INVALID_MAGIC_LINK_MESSAGE
            )

        pending = self._challenges.verify(MAGIC_LINK, email, state)
        if not pending.ok:
            self._discard(session)
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_MAGIC_LINK_INVALID, INVALID_MAGIC_LINK_MESSAGE
            )
        return self._identity_for(email, MAGIC_LINK, session)

    def verify_password(self, username: str, password: str) -> VerificationOutcome:
        normalized = (username or "").strip()
        if not normalized or not password:
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE
            )
        try:
            employee = self._credentials.find_active_by_username(normalized)
        except EmployeeLookupError:
            LOGGER.warning("credential_lookup_failed")
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_LOOKUP_FAILED, INVALID_CREDENTIALS_MESSAGE
            )

        if (
            employee is None
            or not employee.is_active
            or not employee.password_hash
            or not verify_password(password, employee.password_hash)
        ):
            return VerificationOutcome.failed(
                ApiErrorCode.AUTH_INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE
            )
        LOGGER.info("identity_verified", extra={"channel": PASSWORD, "employee_id": employee.id})
        return VerificationOutcome(
            ok=True,
            message="Authenticated",
            identity=VerifiedIdentity(employee=employee, method=PASSWORD),
        )
