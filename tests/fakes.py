from __future__ import annotations

from dataclasses import dataclass, field

from authbridge.auth.identity_provider import IdentityProviderError, ProviderSession
from authbridge.core.config import (
    AppConfig,
    AuthConfig,
    LoggingConfig,
    ProvidersConfig,
    SecurityConfig,
    StorageConfig,
)
from authbridge.core.security import hash_password
from authbridge.employees.models import Employee
from authbridge.employees.repository import EmployeeLookupError
from authbridge.transport.base import DeliveryResult, OutboundMessage

PASSWORD_HASH = hash_password("s3cret")


def make_employee(**overrides: object) -> Employee:
    data: dict[str, object] = {
        "id": "emp-1",
        "employee_id": "E001",
        "organization_id": "org-1",
        "organization_name": "Acme",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "phone": "+15551234567",
        "username": "ada",
        "password_hash": PASSWORD_HASH,
        "role": "employee",
        "is_active": True,
    }
    data.update(overrides)
    return Employee.model_validate(data)


@dataclass
class FakeEmployeeStore:
    employees: list[Employee] = field(default_factory=list)
    fail: bool = False

    def _find(self, field_name: str, value: str) -> Employee | None:
        if self.fail:
            raise EmployeeLookupError("store down")
        for employee in self.employees:
            if getattr(employee, field_name) == value and employee.is_active:
                return employee
        return None

    def find_active_by_phone(self, phone: str) -> Employee | None:
        return self._find("phone", phone)

    def find_active_by_email(self, email: str) -> Employee | None:
        return self._find("email", email)

    def find_active_by_username(self, username: str) -> Employee | None:
        return self._find("username", username)


@dataclass
class FakeProvider:
    name: str = "fake"
    configured: bool = True
    ok: bool = True
    error: Exception | None = None
    sent: list[OutboundMessage] = field(default_factory=list)

    def send(self, message: OutboundMessage) -> DeliveryResult:
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        if not self.ok:
            return DeliveryResult(ok=False, provider=self.name, error="rejected by gateway")
        return DeliveryResult(ok=True, provider=self.name, message_id="msg-1")


@dataclass
class FakeIdentityProvider:
    """Provider double recording every call; phone codes accept ``valid_code``."""

    name: str = "fake_idp"
    supports_phone_otp: bool = True
    valid_code: str = "123456"
    email_for_token: dict[str, str] = field(default_factory=dict)
    sessions: dict[str, ProviderSession] = field(default_factory=dict)
    phone_codes_sent: list[str] = field(default_factory=list)
    links: list[tuple[str, str]] = field(default_factory=list)
    signed_out: list[str] = field(default_factory=list)
    fail_send: bool = False
    fail_sign_out: bool = False

    def send_phone_otp(self, phone: str) -> None:
        if self.fail_send:
            raise IdentityProviderError("provider sms down")
        self.phone_codes_sent.append(phone)

    def verify_phone_otp(self, phone: str, token: str) -> ProviderSession:
        if token != self.valid_code:
            raise IdentityProviderError("Token has expired or is invalid")
        session = ProviderSession(access_token=f"sms-{phone}", phone=phone)
        self.sessions[session.access_token] = session
        return session

    def generate_magic_link(self, email: str, redirect_to: str) -> str:
        self.links.append((email, redirect_to))
        token = f"tok-{len(self.links)}"
        self.email_for_token[token] = email
        return f"https://idp.example.com/verify?token={token}&redirect_to={redirect_to}"

    def verify_email_token(self, email: str, token: str) -> ProviderSession:
        owner = self.email_for_token.pop(token, None)
        if owner is None:
            raise IdentityProviderError("Invalid token")
        session = ProviderSession(access_token=f"mail-{token}", email=owner)
        self.sessions[session.access_token] = session
        return session

    def get_session(self, access_token: str) -> ProviderSession:
        session = self.sessions.get(access_token)
        if session is None:
            raise IdentityProviderError("No session")
        return session

    def sign_out(self, session: ProviderSession) -> None:
        if self.fail_sign_out:
            raise IdentityProviderError("logout failed")
        self.signed_out.append(session.access_token)
        self.sessions.pop(session.access_token, None)


class Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(*, request_max_bytes: int = 1024, sqlite_path: str = "runtime/test.db") -> AppConfig:
    return AppConfig(
        auth=AuthConfig(
            secret_key="secret",
            issuer="test",
            otp_ttl_seconds=300,
            otp_max_attempts=3,
            magic_link_ttl_seconds=3600,
            qr_ttl_seconds=300,
            qr_poll_interval_seconds=2,
            qr_tick_seconds=1,
            default_country_code="+1",
            site_url="http://localhost:3000",
            sms_otp_backend="local",
            qr_image_url_template="https://qr.test/?data={data}",
        ),
        providers=ProvidersConfig(
            twilio_account_sid="",
            twilio_auth_token="",
            twilio_phone_number="",
            twilio_whatsapp_number="",
            meta_whatsapp_access_token="",
            meta_whatsapp_phone_number_id="",
            whatsapp_webhook_url="",
            whatsapp_api_key="",
            resend_api_key="",
            sendgrid_api_key="",
            mailgun_api_key="",
            mailgun_domain="",
            from_email="Time Tracker <noreply@test.local>",
            supabase_url="",
            supabase_service_role_key="",
            supabase_anon_key="",
            request_timeout_seconds=5,
        ),
        storage=StorageConfig(mongo_uri="", mongo_db="authbridge_test", sqlite_path=sqlite_path),
        logging=LoggingConfig(level="INFO"),
        security=SecurityConfig(
            cors_allowed_origins=["http://localhost:3000"],
            request_max_bytes=request_max_bytes,
            login_rate_limit_max_attempts=5,
            login_rate_limit_window_seconds=300,
            login_rate_limit_lock_seconds=600,
            send_rate_limit_max_sends=5,
            send_rate_limit_window_seconds=900,
            send_rate_limit_lock_seconds=900,
        ),
    )
