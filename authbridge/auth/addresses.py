"""Normalization and validation of channel addresses (phones and emails)."""

from __future__ import annotations

import re

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

INVALID_PHONE_MESSAGE = "Please enter a valid phone number"
INVALID_EMAIL_MESSAGE = "Please enter a valid email address"


def is_valid_e164(phone: str) -> bool:
    """Return whether ``phone`` is already in E.164 form."""
    return bool(E164_PATTERN.match(phone or ""))


def normalize_phone(raw: str, default_country_code: str = "+1") -> str:
    """Coerce a user-entered phone number to E.164.

    Ten digits get the default country code, eleven digits with a leading ``1``
    get a ``+``, and input that is already E.164 passes through unchanged.
    Anything else raises ``ValueError``.
    """
    value = (raw or "").strip()
    digits = re.sub(r"\D", "", value)

    if len(digits) == 10:
        candidate = f"{default_country_code}{digits}"
    elif len(digits) == 11 and digits.startswith("1"):
        candidate = f"+{digits}"
    elif is_valid_e164(value):
        candidate = value
    else:
        raise ValueError(INVALID_PHONE_MESSAGE)

    if not is_valid_e164(candidate):
        raise ValueError(INVALID_PHONE_MESSAGE)
    return candidate


def normalize_email(raw: str) -> str:
    """Return trimmed lowercase email, raising ``ValueError`` when malformed."""
    value = (raw or "").strip().lower()
    if not value:
        raise ValueError("Email is required")
    if not EMAIL_PATTERN.match(value):
        raise ValueError(INVALID_EMAIL_MESSAGE)
    return value
