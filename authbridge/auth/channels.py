"""Channel senders for SMS, WhatsApp and magic-link delivery."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from authbridge.api.errors import ApiErrorCode
from authbridge.auth.addresses import normalize_email, normalize_phone
from authbridge.auth.challenges import ChallengeService
from authbridge.auth.identity import IdentityLookupError, IdentityResolver, not_found_message
from authbridge.auth.identity_provider import IdentityProvider, IdentityProviderError
from authbridge.core.logging import mask_address
from authbridge.employees.models import Employee
from authbridge.transport.base import DeliveryResult, OutboundMessage, ProviderChain

LOGGER = logging.getLogger(__name__)

SMS = "sms"
WHATSAPP = "whatsapp"
MAGIC_LINK = "magic_link"

SMS_BACKEND_LOCAL = "local"
SMS_BACKEND_PROVIDER = "provider"

WHATSAPP_TEMPLATES = {
    "authentication": (
        "\U0001f510 Your login code is: *{code}*\n\n"
        "Use this code to complete your authentication.\n\n"
        "⏰ Valid for {minutes} minutes\n"
        "\U0001f512 Never share this code\n\n"
        "Time Tracker App"
    ),
    "password_reset": (
        "\U0001f504 Your password reset code is: *{code}*\n\n"
        "Use this code to reset your password.\n\n"
        "⏰ Valid for {minutes} minutes\n"
        "\U0001f512 Never share this code\n\n"
        "Time Tracker App"
    ),
}

SMS_TEMPLATE = "Your Time Tracker login code is {code}. It expires in {minutes} minutes."

MAGIC_LINK_SUBJECT = "Your Time Tracker login link"

MAGIC_LINK_TEMPLATE = """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2563eb;">Sign in to Time Tracker</h2>
  <p>Hello {name},</p>
  <p>Click the button below to sign in. This link can be used once and expires in {minutes} minutes.</p>
  <p style="margin: 24px 0;">
    <a href="{link}" style="background: #2563eb; color: #ffffff; padding: 12px 24px; border-radius: 6px; text-decoration: none;">Sign in</a>
  </p>
  <p style="color: #6b7280; font-size: 12px;">If you did not request this email you can ignore it.</p>
</div>"""


def whatsapp_message(code: str, template: str = "authentication", *, ttl_seconds: int = 300) -> str:
    """Render a WhatsApp code message; unknown templates fall back to authentication."""
    body = WHATSAPP_TEMPLATES.get(template) or WHATSAPP_TEMPLATES["authentication"]
    return body.format(code=code, minutes=max(1, ttl_seconds // 60))


def sms_message(code: str, *, ttl_seconds: int = 300) -> str:
    return SMS_TEMPLATE.format(code=code, minutes=max(1, ttl_seconds // 60))


def magic_link_email(link: str, *, name: str = "", ttl_seconds: int = 3600) -> str:
    return MAGIC_LINK_TEMPLATE.format(
        name=html.escape(name or "there"),
        link=html.escape(link, quote=True),
        minutes=max(1, ttl_seconds // 60),
    )


def with_query_params(url: str, **params: str) -> str:
    """Return ``url`` with ``params`` merged into its query string."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass(frozen=True)
class ChannelOutcome:
    """Structured result of a send through one channel.

    ``transport_failure`` is set only when delivery itself failed, which is
    the sole trigger for channel fallback.
    """

    ok: bool
    channel: str
    message: str
    effective_channel: str = ""
    address: str = ""
    error_code: ApiErrorCode | None = None
    expires_in: int = 0
    employee: Employee | None = None
    transport_failure: bool = False


def _failed(
    channel: str,
    error_code: ApiErrorCode,
    message: str,
    *,
    address: str = "",
    employee: Employee | None = None,
    transport_failure: bool = False,
) -> ChannelOutcome:
    return ChannelOutcome(
        ok=False,
        channel=channel,
        effective_channel=channel,
        message=message,
        address=address,
        error_code=error_code,
        employee=employee,
        transport_failure=transport_failure,
    )


def _delivery_failed(
    channel: str, label: str, result: DeliveryResult, *, address: str, employee: Employee
) -> ChannelOutcome:
    detail = result.error
    if result.failures:
        detail = f"{detail} ({'; '.join(result.failures)})"
    return _failed(
        channel,
        ApiErrorCode.AUTH_DELIVERY_FAILED if result.any_configured else ApiErrorCode.AUTH_NO_PROVIDER,
        f"Failed to send {label}: {detail}",
        address=address,
        employee=employee,
        transport_failure=True,
    )


def _resolve(
    resolver: IdentityResolver, channel: str, address: str
) -> Employee | ChannelOutcome:
    """Gate on the identity store; returns the employee or a failed outcome."""
    try:
        employee = resolver.resolve(address)
    except IdentityLookupError:
        return _failed(
            channel, ApiErrorCode.AUTH_LOOKUP_FAILED, not_found_message(address), address=address
        )
    if employee is None:
        return _failed(
            channel,
            ApiErrorCode.AUTH_EMPLOYEE_NOT_FOUND,
            not_found_message(address),
            address=address,
        )
    return employee


class SmsSender:
    """Send a login code by SMS.

    The ``local`` backend issues the code from the challenge store and
    delivers it through the SMS provider chain. The ``provider`` backend
    delegates issue and delivery to the identity provider's phone OTP.
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        challenges: ChallengeService,
        chain: ProviderChain,
        *,
        default_country_code: str = "+1",
        identity_provider: IdentityProvider | None = None,
        backend: str = SMS_BACKEND_LOCAL,
    ) -> None:
        if backend == SMS_BACKEND_PROVIDER and (
            identity_provider is None or not identity_provider.supports_phone_otp
        ):
            raise ValueError("Provider SMS backend requires an identity provider with phone OTP")
        self._resolver = resolver
        self._challenges = challenges
        self._chain = chain
        self._default_country_code = default_country_code
        self._identity_provider = identity_provider
        self._backend = backend

    @property
    def backend(self) -> str:
        return self._backend

    def send(self, raw_phone: str) -> ChannelOutcome:
        try:
            phone = normalize_phone(raw_phone, self._default_country_code)
        except ValueError as exc:
            return _failed(SMS, ApiErrorCode.AUTH_INVALID_PHONE, str(exc))

        employee = _resolve(self._resolver, SMS, phone)
        if isinstance(employee, ChannelOutcome):
            return employee

        provider = self._identity_provider
        if self._backend == SMS_BACKEND_PROVIDER and provider is not None:
            try:
                provider.send_phone_otp(phone)
            except IdentityProviderError as exc:
                LOGGER.warning(
                    "sms_provider_send_failed: %s",
                    mask_address(phone),
                    extra={"channel": SMS, "provider": provider.name},
                )
                return _failed(
                    SMS,
                    ApiErrorCode.AUTH_DELIVERY_FAILED,
                    f"Failed to send SMS: {exc}",
                    address=phone,
                    employee=employee,
                    transport_failure=True,
                )
        else:
            code = self._challenges.issue(SMS, phone)
            result = self._chain.deliver(
                OutboundMessage(to=phone, body=sms_message(code, ttl_seconds=self._challenges.ttl_seconds))
            )
            if not result.ok:
                self._challenges.discard(SMS, phone)
                return _delivery_failed(SMS, "SMS", result, address=phone, employee=employee)

        return ChannelOutcome(
            ok=True,
            channel=SMS,
            effective_channel=SMS,
            message=f"Verification code sent to {phone}",
            address=phone,
            expires_in=self._challenges.ttl_seconds,
            employee=employee,
        )


class WhatsAppSender:
    """Send a login code over WhatsApp through the ordered provider chain."""

    def __init__(
        self,
        resolver: IdentityResolver,
        challenges: ChallengeService,
        chain: ProviderChain,
        *,
        default_country_code: str = "+1",
    ) -> None:
        self._resolver = resolver
        self._challenges = challenges
        self._chain = chain
        self._default_country_code = default_country_code

    def send(self, raw_phone: str, template: str = "authentication") -> ChannelOutcome:
        try:
            phone = normalize_phone(raw_phone, self._default_country_code)
        except ValueError as exc:
            return _failed(WHATSAPP, ApiErrorCode.AUTH_INVALID_PHONE, str(exc))

        employee = _resolve(self._resolver, WHATSAPP, phone)
        if isinstance(employee, ChannelOutcome):
            return employee

        code = self._challenges.issue(WHATSAPP, phone)
        result = self._chain.deliver(
            OutboundMessage(
                to=phone,
                body=whatsapp_message(code, template, ttl_seconds=self._challenges.ttl_seconds),
            )
        )
        if not result.ok:
            self._challenges.discard(WHATSAPP, phone)
            return _delivery_failed(WHATSAPP, "WhatsApp OTP", result, address=phone, employee=employee)

        return ChannelOutcome(
            ok=True,
            channel=WHATSAPP,
            effective_channel=WHATSAPP,
            message="WhatsApp OTP sent successfully",
            address=phone,
            expires_in=self._challenges.ttl_seconds,
            employee=employee,
        )


class MagicLinkSender:
    """Email a single-use sign-in link bound to the employee's address.

    A pending ``magic_link`` challenge is recorded alongside the link; its
    nonce travels in the redirect target as ``magic_state`` and must be
    presented again when the return trip is completed.
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        challenges: ChallengeService,
        identity_provider: IdentityProvider,
        chain: ProviderChain,
        *,
        site_url: str,
        ttl_seconds: int = 3600,
    ) -> None:
        self._resolver = resolver
        self._challenges = challenges
        self._identity_provider = identity_provider
        self._chain = chain
        self._site_url = site_url.rstrip("/")
        self._ttl_seconds = int(ttl_seconds)

    def send(
        self,
        raw_email: str,
        redirect_to: str | None = None,
        *,
        employee: Employee | None = None,
    ) -> ChannelOutcome:
        try:
            email = normalize_email(raw_email)
        except ValueError as exc:
            return _failed(MAGIC_LINK, ApiErrorCode.AUTH_INVALID_EMAIL, str(exc))

        if employee is None:
            resolved = _resolve(self._resolver, MAGIC_LINK, email)
            if isinstance(resolved, ChannelOutcome):
                return resolved
            employee = resolved

        state = self._challenges.issue(MAGIC_LINK, email, ttl_seconds=self._ttl_seconds)
        target = with_query_params(
            redirect_to or f"{self._site_url}/", magic_state=state, email=email
        )
        try:
            link = self._identity_provider.generate_magic_link(email, target)
        except IdentityProviderError as exc:
            self._challenges.discard(MAGIC_LINK, email)
            LOGGER.warning(
                "magic_link_generation_failed: %s",
                mask_address(email),
                extra={"channel": MAGIC_LINK, "provider": self._identity_provider.name},
            )
            return _failed(
                MAGIC_LINK,
                ApiErrorCode.AUTH_DELIVERY_FAILED,
                f"Failed to send link: {exc}",
                address=email,
                employee=employee,
                transport_failure=True,
            )

        result = self._chain.deliver(
            OutboundMessage(
                to=email,
                subject=MAGIC_LINK_SUBJECT,
                body=magic_link_email(link, name=employee.first_name, ttl_seconds=self._ttl_seconds),
            )
        )
        if not result.ok:
            self._challenges.discard(MAGIC_LINK, email)
            return _delivery_failed(MAGIC_LINK, "link", result, address=email, employee=employee)

        return ChannelOutcome(
            ok=True,
            channel=MAGIC_LINK,
            effective_channel=MAGIC_LINK,
            message="Magic link sent! Check your email and click the link to login.",
            address=email,
            expires_in=self._ttl_seconds,
            employee=employee,
        )
