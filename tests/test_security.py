from __future__ import annotations

import pytest

from authbridge.core.security import (
    TokenError,
    build_signed_token,
    codes_match,
    decode_signed_token,
    digest_code,
    generate_otp_code,
    hash_password,
    verify_password,
)


def test_password_hash_round_trip_and_unknown_formats() -> None:
    stored = hash_password("s3cret", rounds=1_000)

    assert stored.startswith("pbkdf2_sha256$1000$")
    assert verify_password("s3cret", stored) is True
    assert verify_password("wrong", stored) is False
    assert verify_password("s3cret", "bcrypt$12$abc$def") is False
    assert verify_password("s3cret", "") is False


def test_otp_codes_are_numeric_and_stored_as_digest() -> None:
    code = generate_otp_code()
    stored = digest_code(code, "k")

    assert len(code) == 6 and code.isdigit()
    assert code not in stored
    assert codes_match(f" {code} ", stored, "k") is True
    assert codes_match(code, stored, "other-key") is False


def test_signed_token_checks_signature_and_expiry() -> None:
    token = build_signed_token({"sub": "ada@example.com", "exp": 1_000}, "k")

    assert decode_signed_token(token, "k", now=999)["sub"] == "ada@example.com"
    with pytest.raises(TokenError, match="expired"):
        decode_signed_token(token, "k", now=1_001)
    with pytest.raises(TokenError, match="signature"):
        decode_signed_token(token, "other", now=999)
    with pytest.raises(TokenError, match="Malformed"):
        decode_signed_token("not-a-token", "k")
