"""Security primitives: password hashes, signed tokens and one-time codes."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import secrets
import time
from typing import Any

PASSWORD_ALGORITHM = "pbkdf2_sha256"
PASSWORD_ROUNDS = 120_000
TOKEN_HEADER = {"alg": "HS256", "typ": "JWT"}


class TokenError(ValueError):
    """Signed token is malformed, forged or expired."""


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _hmac_sha256(secret_key: str, message: bytes) -> bytes:
    return hmac.new(secret_key.encode("utf-8"), message, hashlib.sha256).digest()


def hash_password(password: str, *, rounds: int = PASSWORD_ROUNDS) -> str:
    """Return ``pbkdf2_sha256$rounds$salt$digest`` for ``password``."""
    salt = os.urandom(16)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return "$".join((PASSWORD_ALGORITHM, str(rounds), _b64url_encode(salt), _b64url_encode(derived)))


def verify_password(password: str, stored_hash: str) -> bool:
    """Check ``password`` against a stored hash; unknown formats never match."""
    parts = (stored_hash or "").split("$")
    if len(parts) != 4 or parts[0] != PASSWORD_ALGORITHM:
        return False
    try:
        rounds = int(parts[1])
        salt = _b64url_decode(parts[2])
        expected = _b64url_decode(parts[3])
    except ValueError:
        return False
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(derived, expected)


def generate_otp_code(length: int = 6) -> str:
    """Return a uniformly random numeric code of the given length."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


def digest_code(code: str, secret_key: str) -> str:
    """Keyed digest of a one-time code; only this form is stored."""
    return hmac.new(
        secret_key.encode("utf-8"), code.strip().encode("utf-8"), hashlib.sha256
    ).hexdigest()


def codes_match(submitted: str, stored_digest: str, secret_key: str) -> bool:
    return hmac.compare_digest(digest_code(submitted, secret_key), stored_digest)


def build_signed_token(claims: dict[str, Any], secret_key: str) -> str:
    """Encode ``claims`` as an HS256 JWT."""
    segments = [
        _b64url_encode(json.dumps(part, separators=(",", ":")).encode("utf-8"))
        for part in (TOKEN_HEADER, claims)
    ]
    signing_input = ".".join(segments).encode("ascii")
    segments.append(_b64url_encode(_hmac_sha256(secret_key, signing_input)))
    return ".".join(segments)


def decode_signed_token(token: str, secret_key: str, *, now: float | None = None) -> dict[str, Any]:
    """Verify signature and ``exp`` of a token, returning its claims.

    Raises ``TokenError`` when the token is malformed, carries a bad
    signature or is expired at ``now`` (defaults to the current time).
    """
    segments = (token or "").split(".")
    if len(segments) != 3:
        raise TokenError("Malformed token")
    header_part, claims_part, signature_part = segments

    expected = _hmac_sha256(secret_key, f"{header_part}.{claims_part}".encode("ascii"))
    try:
        signature = _b64url_decode(signature_part)
        claims = json.loads(_b64url_decode(claims_part).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise TokenError("Malformed token") from exc
    if not hmac.compare_digest(expected, signature):
        raise TokenError("Invalid token signature")
    if not isinstance(claims, dict):
        raise TokenError("Invalid token payload")

    expires_at = int(claims.get("exp") or 0)
    current = time.time() if now is None else now
    if expires_at and expires_at < int(current):
        raise TokenError("Token expired")
    return claims
