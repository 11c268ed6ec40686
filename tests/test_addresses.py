from __future__ import annotations

import pytest

from authbridge.auth.addresses import (
    INVALID_PHONE_MESSAGE,
    is_valid_e164,
    normalize_email,
    normalize_phone,
)
from authbridge.core.logging import mask_address


def test_normalize_phone_adds_default_country_code_to_ten_digits() -> None:
    assert normalize_phone("(555) 123-4567") == "+15551234567"
    assert normalize_phone("555.123.4567", "+44") == "+445551234567"


def test_normalize_phone_prefixes_plus_for_eleven_digits_with_leading_one() -> None:
    assert normalize_phone("1 555 123 4567") == "+15551234567"


def test_normalize_phone_passes_through_e164() -> None:
    assert normalize_phone(" +447911123456 ") == "+447911123456"


@pytest.mark.parametrize("raw", ["", "12345", "abc", "+0044123", "25551234567"])
def test_normalize_phone_rejects_invalid_numbers(raw: str) -> None:
    with pytest.raises(ValueError) as exc:
        normalize_phone(raw)
    assert str(exc.value) == INVALID_PHONE_MESSAGE


def test_normalized_phones_always_match_e164() -> None:
    for raw in ["2025550100", "12025550100", "+12025550100"]:
        assert is_valid_e164(normalize_phone(raw))


def test_normalize_email_trims_and_lowercases() -> None:
    assert normalize_email("  Ada@Example.COM ") == "ada@example.com"


def test_normalize_email_rejects_malformed_input() -> None:
    with pytest.raises(ValueError):
        normalize_email("not-an-email")
    with pytest.raises(ValueError):
        normalize_email("   ")


def test_mask_address_hides_most_of_phone_and_email() -> None:
    assert mask_address("+15551234567") == "+1***67"
    assert mask_address("ada@example.com") == "a***@example.com"
    assert mask_address("123") == "***"
