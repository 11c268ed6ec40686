from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authbridge.api.contracts import HealthResponse
from authbridge.api.http_setup import register_exception_handlers, register_http_middleware
from authbridge.auth.challenges import ChallengeService, InMemoryChallengeStore, MongoChallengeStore
from authbridge.auth.channels import (
    SMS_BACKEND_PROVIDER,
    MagicLinkSender,
    SmsSender,
    WhatsAppSender,
)
from authbridge.auth.fallback import FallbackOrchestrator
from authbridge.auth.identity import IdentityResolver
from authbridge.auth.identity_provider import (
    IdentityProvider,
    LocalIdentityProvider,
    SupabaseIdentityProvider,
)
from authbridge.auth.rate_limiter import AttemptRateLimiter
from authbridge.auth.router import create_auth_router
from authbridge.auth.verification import VerificationEngine
from authbridge.core.config import AppConfig
from authbridge.core.logging import setup_logging
from authbridge.core.mongo import connect_database
from authbridge.core.mongo_migrations import apply_mongo_migrations
from authbridge.employees.repository import EmployeeRepository
from authbridge.qr.router import create_qr_router
from authbridge.qr.service import QRSessionService
from authbridge.qr.store import MemoryQRSessionStore, MongoQRSessionStore
from authbridge.session.unifier import SessionUnifier
from authbridge.transport.base import ProviderChain
from authbridge.transport.email import (
    MailgunEmailProvider,
    ResendEmailProvider,
    SendGridEmailProvider,
)
from authbridge.transport.sms import twilio_sms_provider
from authbridge.transport.whatsapp import (
    MetaWhatsAppProvider,
    WebhookWhatsAppProvider,
    twilio_whatsapp_provider,
)

load_dotenv()
APP_CONFIG = AppConfig.from_env()
setup_logging(APP_CONFIG.logging.level)
LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parent


def build_identity_provider(config: AppConfig) -> IdentityProvider:
    providers = config.providers
    if providers.supabase_url and providers.supabase_anon_key and providers.supabase_service_role_key:
        return SupabaseIdentityProvider(
            url=providers.supabase_url,
            anon_key=providers.supabase_anon_key,
            service_role_key=providers.supabase_service_role_key,
            timeout=providers.request_timeout_seconds,
        )
    return LocalIdentityProvider(
        secret_key=config.auth.secret_key,
        issuer=config.auth.issuer,
        link_ttl_seconds=config.auth.magic_link_ttl_seconds,
    )


def build_provider_chains(config: AppConfig) -> dict[str, ProviderChain]:
    """Delivery chains per channel, in fixed priority order."""
    p = config.providers
    timeout = p.request_timeout_seconds
    return {
        "sms": ProviderChain(
            "sms",
            [
                twilio_sms_provider(
                    p.twilio_account_sid, p.twilio_auth_token, p.twilio_phone_number, timeout=timeout
                )
            ],
        ),
        "whatsapp": ProviderChain(
            "whatsapp",
            [
                twilio_whatsapp_provider(
                    p.twilio_account_sid,
                    p.twilio_auth_token,
                    p.twilio_whatsapp_number,
                    timeout=timeout,
                ),
                MetaWhatsAppProvider(
                    access_token=p.meta_whatsapp_access_token,
                    phone_number_id=p.meta_whatsapp_phone_number_id,
                    timeout=timeout,
                ),
                WebhookWhatsAppProvider(
                    webhook_url=p.whatsapp_webhook_url, api_key=p.whatsapp_api_key, timeout=timeout
                ),
            ],
        ),
        "email": ProviderChain(
            "email",
            [
                ResendEmailProvider(api_key=p.resend_api_key, from_email=p.from_email, timeout=timeout),
                SendGridEmailProvider(
                    api_key=p.sendgrid_api_key, from_email=p.from_email, timeout=timeout
                ),
                MailgunEmailProvider(
                    api_key=p.mailgun_api_key,
                    domain=p.mailgun_domain,
                    from_email=p.from_email,
                    timeout=timeout,
                ),
            ],
        ),
    }


def create_app(
    config: AppConfig = APP_CONFIG,
    *,
    app_root: Path = APP_ROOT,
    database: Any | None = None,
) -> FastAPI:
    apply_mongo_migrations(config.storage)
    if database is None:
        database = connect_database(config.storage)

    state_db_path = (app_root / config.storage.sqlite_path).resolve()
    security = config.security
    login_limiter = AttemptRateLimiter(
        database_path=state_db_path,
        scope="login",
        max_attempts=security.login_rate_limit_max_attempts,
        window_seconds=security.login_rate_limit_window_seconds,
        lock_seconds=security.login_rate_limit_lock_seconds,
        label="login attempts",
    )
    send_limiter = AttemptRateLimiter(
        database_path=state_db_path,
        scope="send",
        max_attempts=security.send_rate_limit_max_sends,
        window_seconds=security.send_rate_limit_window_seconds,
        lock_seconds=security.send_rate_limit_lock_seconds,
        label="code requests",
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        login_limiter.close()
        send_limiter.close()

    app = FastAPI(title="Employee Auth Bridge API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)

    auth = config.auth
    employees = EmployeeRepository(app_root, database)
    resolver = IdentityResolver(employees)
    challenge_store = (
        MongoChallengeStore(database["otp_challenges"])
        if database is not None
        else InMemoryChallengeStore()
    )
    challenges = ChallengeService(
        challenge_store,
        secret_key=auth.secret_key,
        ttl_seconds=auth.otp_ttl_seconds,
        max_attempts=auth.otp_max_attempts,
    )
    identity_provider = build_identity_provider(config)
    sms_backend = auth.sms_otp_backend
    if sms_backend == SMS_BACKEND_PROVIDER and not identity_provider.supports_phone_otp:
        LOGGER.warning("Provider SMS backend needs Supabase credentials; using local codes.")
        sms_backend = "local"

    chains = build_provider_chains(config)
    sms_sender = SmsSender(
        resolver,
        challenges,
        chains["sms"],
        default_country_code=auth.default_country_code,
        identity_provider=identity_provider,
        backend=sms_backend,
    )
    whatsapp_sender = WhatsAppSender(
        resolver, challenges, chains["whatsapp"], default_country_code=auth.default_country_code
    )
    magic_link_sender = MagicLinkSender(
        resolver,
        challenges,
        identity_provider,
        chains["email"],
        site_url=auth.site_url,
        ttl_seconds=auth.magic_link_ttl_seconds,
    )
    engine = VerificationEngine(
        resolver,
        challenges,
        identity_provider,
        employees,
        default_country_code=auth.default_country_code,
        sms_backend=sms_backend,
    )

    app.include_router(
        create_auth_router(
            orchestrator=FallbackOrchestrator(sms_sender, magic_link_sender),
            whatsapp=whatsapp_sender,
            magic_link=magic_link_sender,
            engine=engine,
            unifier=SessionUnifier(identity_provider),
            identity_provider=identity_provider,
            login_limiter=login_limiter,
            send_limiter=send_limiter,
            default_country_code=auth.default_country_code,
        )
    )

    qr_store = (
        MongoQRSessionStore(database["qr_auth_sessions"])
        if database is not None
        else MemoryQRSessionStore()
    )
    qr_service = QRSessionService(
        qr_store,
        site_url=auth.site_url,
        ttl_seconds=auth.qr_ttl_seconds,
        image_url_template=auth.qr_image_url_template,
    )
    app.include_router(create_qr_router(qr_service, engine, login_limiter))

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    LOGGER.info(
        "app_configured",
        extra={"provider": identity_provider.name, "channel": sms_backend},
    )
    return app


app = create_app()
