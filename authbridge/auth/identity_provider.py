"""Identity-provider substrate used only to deliver and verify codes and links.

Sessions returned by a provider are verification artifacts. They are never
trusted as the application session and are signed out once the employee
identity has been extracted.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Protocol
from urllib.parse import urlencode

import requests

from authbridge.core.logging import mask_address
from authbridge.core.security import build_signed_token, decode_signed_token

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSession:
    """Transient provider-level session created as a verification side effect."""

    access_token: str
    email: str = ""
    phone: str = ""
    expires_at: float = 0.0


class IdentityProviderError(RuntimeError):
    """Provider rejected the request or could not be reached."""


class IdentityProvider(Protocol):
    name: str

    @property
    def supports_phone_otp(self) -> bool:
        """Whether the provider can deliver and verify phone codes itself."""

    def send_phone_otp(self, phone: str) -> None:
        """Ask the provider to text a one-time code to ``phone``."""

    def verify_phone_otp(self, phone: str, token: str) -> ProviderSession:
        """Verify a phone code; returns the provider session it creates."""

    def generate_magic_link(self, email: str, redirect_to: str) -> str:
        """Return a single-use sign-in link bound to ``email``."""

    def verify_email_token(self, email: str, token: str) -> ProviderSession:
        """Redeem a magic-link token for ``email``."""

    def get_session(self, access_token: str) -> ProviderSession:
        """Look up the identity behind an active provider session."""

    def sign_out(self, session: ProviderSession) -> None:
        """Tear down a provider session."""


class LocalIdentityProvider:
    """Self-contained provider issuing HMAC-signed magic-link tokens.

    Phone codes are not supported; the SMS channel uses the local challenge
    store instead.
    """

    name = "local"

    def __init__(
        self,
        *,
        secret_key: str,
        issuer: str,
        link_ttl_seconds: int = 3600,
        session_ttl_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret_key = secret_key
        self._issuer = issuer
        self._link_ttl_seconds = int(link_ttl_seconds)
        self._session_ttl_seconds = int(session_ttl_seconds)
        self._clock = clock
        self._redeemed: dict[str, float] = {}
        self._sessions: dict[str, ProviderSession] = {}
        self._lock = Lock()

    @property
    def supports_phone_otp(self) -> bool:
        return False

    def send_phone_otp(self, phone: str) -> None:
        raise IdentityProviderError("Phone codes are not supported by the local provider")

    def verify_phone_otp(self, phone: str, token: str) -> ProviderSession:
        raise IdentityProviderError("Phone codes are not supported by the local provider")

    def generate_magic_link(self, email: str, redirect_to: str) -> str:
        now = int(self._clock())
        token = build_signed_token(
            {
                "iss": self._issuer,
                "sub": email,
                "typ": "magic_link",
                "jti": secrets.token_urlsafe(16),
                "iat": now,
                "exp": now + self._link_ttl_seconds,
            },
            self._secret_key,
        )
        separator = "&" if "?" in redirect_to else "?"
        return f"{redirect_to}{separator}{urlencode({'token': token})}"

    def verify_email_token(self, email: str, token: str) -> ProviderSession:
        try:
            claims = decode_signed_token(token, self._secret_key, now=self._clock())
        except ValueError as exc:
            raise IdentityProviderError(str(exc)) from exc
        if claims.get("typ") != "magic_link" or claims.get("iss") != self._issuer:
            raise IdentityProviderError("Invalid magic link")
        if str(claims.get("sub") or "") != email:
            raise IdentityProviderError("Magic link was issued for a different email")

        jti = str(claims.get("jti") or "")
        now = self._clock()
        access_token = secrets.token_urlsafe(32)
        session = ProviderSession(
            access_token=access_token,
            email=email,
            expires_at=now + self._session_ttl_seconds,
        )
        with self._lock:
            self._prune(now)
            if not jti or jti in self._redeemed:
                raise IdentityProviderError("Magic link has already been used")
            self._redeemed[jti] = float(claims.get("exp") or now)
            self._sessions[access_token] = session
        return session

    def _prune(self, now: float) -> None:
        # Links past exp fail decode_signed_token, so their ids are no longer needed.
        self._redeemed = {jti: exp for jti, exp in self._redeemed.items() if exp >= int(now)}
        self._sessions = {
            token: session for token, session in self._sessions.items() if session.expires_at >= now
        }

    def get_session(self, access_token: str) -> ProviderSession:
        with self._lock:
            session = self._sessions.get(access_token)
        if session is None or session.expires_at < self._clock():
            raise IdentityProviderError("No active provider session")
        return session

    def sign_out(self, session: ProviderSession) -> None:
        with self._lock:
            self._sessions.pop(session.access_token, None)


class SupabaseIdentityProvider:
    """Supabase Auth (GoTrue) over its REST API."""

    name = "supabase"

    def __init__(
        self,
        *,
        url: str,
        anon_key: str,
        service_role_key: str,
        timeout: float = 10.0,
        session: Any | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = url.rstrip("/") + "/auth/v1"
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        self._timeout = timeout
        self._http = session or requests.Session()
        self._clock = clock

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._anon_key and self._service_role_key)

    @property
    def supports_phone_otp(self) -> bool:
        return True

    def _request(
        self, method: str, path: str, *, bearer: str = "", admin: bool = False, **kwargs: Any
    ) -> dict[str, Any]:
        api_key = self._service_role_key if admin else self._anon_key
        headers = {"apikey": api_key, "Authorization": f"Bearer {bearer or api_key}"}
        try:
            response = self._http.request(
                method,
                f"{self._base_url}{path}",
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise IdentityProviderError(f"Identity provider unreachable: {exc}") from exc
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = (
                body.get("msg")
                or body.get("error_description")
                or body.get("message")
                or f"HTTP {response.status_code}"
            )
            raise IdentityProviderError(str(message))
        try:
            return response.json() or {}
        except ValueError:
            return {}

    def _session_from(self, payload: dict[str, Any]) -> ProviderSession:
        access_token = str(payload.get("access_token") or "")
        if not access_token:
            raise IdentityProviderError("Identity provider returned no session")
        user = payload.get("user") or {}
        return ProviderSession(
            access_token=access_token,
            email=str(user.get("email") or "").lower(),
            phone=_plus_prefixed(str(user.get("phone") or "")),
            expires_at=self._clock() + float(payload.get("expires_in") or 0),
        )

    def send_phone_otp(self, phone: str) -> None:
        self._request("POST", "/otp", json={"phone": phone, "channel": "sms"})
        LOGGER.info("provider_phone_otp_sent: %s", mask_address(phone), extra={"provider": self.name})

    def verify_phone_otp(self, phone: str, token: str) -> ProviderSession:
        payload = self._request(
            "POST", "/verify", json={"type": "sms", "phone": phone, "token": token}
        )
        return self._session_from(payload)

    def generate_magic_link(self, email: str, redirect_to: str) -> str:
        payload = self._request(
            "POST",
            "/admin/generate_link",
            admin=True,
            json={"type": "magiclink", "email": email, "redirect_to": redirect_to},
        )
        properties = payload.get("properties") or {}
        link = payload.get("action_link") or properties.get("action_link")
        if not link:
            raise IdentityProviderError("Identity provider returned no magic link")
        return str(link)

    def verify_email_token(self, email: str, token: str) -> ProviderSession:
        payload = self._request(
            "POST", "/verify", json={"type": "email", "email": email, "token": token}
        )
        return self._session_from(payload)

    def get_session(self, access_token: str) -> ProviderSession:
        user = self._request("GET", "/user", bearer=access_token)
        return ProviderSession(
            access_token=access_token,
            email=str(user.get("email") or "").lower(),
            phone=_plus_prefixed(str(user.get("phone") or "")),
        )

    def sign_out(self, session: ProviderSession) -> None:
        self._request("POST", "/logout", bearer=session.access_token)


def _plus_prefixed(phone: str) -> str:
    if phone and not phone.startswith("+"):
        return f"+{phone}"
    return phone
