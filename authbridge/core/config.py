"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


@dataclass(frozen=True)
class AuthConfig:
    """Channel, challenge and handshake policy."""

    secret_key: str
    issuer: str
    otp_ttl_seconds: int
    otp_max_attempts: int
    magic_link_ttl_seconds: int
    qr_ttl_seconds: int
    qr_poll_interval_seconds: float
    qr_tick_seconds: float
    default_country_code: str
    site_url: str
    sms_otp_backend: str
    qr_image_url_template: str


@dataclass(frozen=True)
class ProvidersConfig:
    """Credentials for outbound gateways and the identity provider."""

    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str
    twilio_whatsapp_number: str
    meta_whatsapp_access_token: str
    meta_whatsapp_phone_number_id: str
    whatsapp_webhook_url: str
    whatsapp_api_key: str
    resend_api_key: str
    sendgrid_api_key: str
    mailgun_api_key: str
    mailgun_domain: str
    from_email: str
    supabase_url: str
    supabase_service_role_key: str
    supabase_anon_key: str
    request_timeout_seconds: float


@dataclass(frozen=True)
class StorageConfig:
    """Backing stores for employees, challenges, QR sessions and limiter state."""

    mongo_uri: str
    mongo_db: str
    sqlite_path: str


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    cors_allowed_origins: list[str]
    request_max_bytes: int
    login_rate_limit_max_attempts: int
    login_rate_limit_window_seconds: int
    login_rate_limit_lock_seconds: int
    send_rate_limit_max_sends: int
    send_rate_limit_window_seconds: int
    send_rate_limit_lock_seconds: int


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    providers: ProvidersConfig
    storage: StorageConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        secret_key = _env("AUTH_SECRET_KEY") or "dev-insecure-secret-change-me"
        sms_backend = _env("SMS_OTP_BACKEND", "local").lower() or "local"
        if sms_backend not in {"local", "provider"}:
            sms_backend = "local"
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]

        return AppConfig(
            auth=AuthConfig(
                secret_key=secret_key,
                issuer=_env("AUTH_ISSUER", "authbridge") or "authbridge",
                otp_ttl_seconds=int(_env("OTP_TTL_SECONDS", "300")),
                otp_max_attempts=int(_env("OTP_MAX_ATTEMPTS", "3")),
                magic_link_ttl_seconds=int(_env("MAGIC_LINK_TTL_SECONDS", "3600")),
                qr_ttl_seconds=int(_env("QR_TTL_SECONDS", "300")),
                qr_poll_interval_seconds=float(_env("QR_POLL_INTERVAL_SECONDS", "2")),
                qr_tick_seconds=float(_env("QR_TICK_SECONDS", "1")),
                default_country_code=_env("DEFAULT_COUNTRY_CODE", "+1") or "+1",
                site_url=(_env("SITE_URL", "http://localhost:3000") or "http://localhost:3000").rstrip("/"),
                sms_otp_backend=sms_backend,
                qr_image_url_template=_env(
                    "QR_IMAGE_URL_TEMPLATE",
                    "https://api.qrserver.com/v1/create-qr-code/?size=300x300&data={data}",
                ),
            ),
            providers=ProvidersConfig(
                twilio_account_sid=_env("TWILIO_ACCOUNT_SID"),
                twilio_auth_token=_env("TWILIO_AUTH_TOKEN"),
                twilio_phone_number=_env("TWILIO_PHONE_NUMBER"),
                twilio_whatsapp_number=_env("TWILIO_WHATSAPP_NUMBER"),
                meta_whatsapp_access_token=_env("META_WHATSAPP_ACCESS_TOKEN"),
                meta_whatsapp_phone_number_id=_env("META_WHATSAPP_PHONE_NUMBER_ID"),
                whatsapp_webhook_url=_env("WHATSAPP_WEBHOOK_URL"),
                whatsapp_api_key=_env("WHATSAPP_API_KEY"),
                resend_api_key=_env("RESEND_API_KEY"),
                sendgrid_api_key=_env("SENDGRID_API_KEY"),
                mailgun_api_key=_env("MAILGUN_API_KEY"),
                mailgun_domain=_env("MAILGUN_DOMAIN"),
                from_email=_env("FROM_EMAIL", "Time Tracker <noreply@timetracker.com>"),
                supabase_url=_env("SUPABASE_URL").rstrip("/"),
                supabase_service_role_key=_env("SUPABASE_SERVICE_ROLE_KEY"),
                supabase_anon_key=_env("SUPABASE_ANON_KEY"),
                request_timeout_seconds=float(_env("PROVIDER_TIMEOUT_SECONDS", "10")),
            ),
            storage=StorageConfig(
                mongo_uri=_env("MONGODB_URI"),
                mongo_db=_env("MONGODB_DB", "authbridge") or "authbridge",
                sqlite_path=_env("STATE_SQLITE_PATH", "runtime/app_state.db")
                or "runtime/app_state.db",
            ),
            logging=LoggingConfig(level=_env("LOG_LEVEL", "INFO") or "INFO"),
            security=SecurityConfig(
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=int(_env("REQUEST_MAX_BYTES", str(64 * 1024))),
                login_rate_limit_max_attempts=int(_env("LOGIN_RATE_LIMIT_MAX_ATTEMPTS", "5")),
                login_rate_limit_window_seconds=int(_env("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "300")),
                login_rate_limit_lock_seconds=int(_env("LOGIN_RATE_LIMIT_LOCK_SECONDS", "600")),
                send_rate_limit_max_sends=int(_env("SEND_RATE_LIMIT_MAX_SENDS", "5")),
                send_rate_limit_window_seconds=int(_env("SEND_RATE_LIMIT_WINDOW_SECONDS", "900")),
                send_rate_limit_lock_seconds=int(_env("SEND_RATE_LIMIT_LOCK_SECONDS", "900")),
            ),
        )

