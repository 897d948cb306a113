"""
The Link Phone - Phone Number Utility Tests

Tests for dial-string normalization, masking and duration formatting.

Run with: pytest tests/test_numbers.py -v
"""

import pytest

from linkphone.core.exceptions import InvalidPhoneNumberError
from linkphone.telephony.numbers import (
    format_duration,
    mask_phone_number,
    normalize_phone_number,
    validate_phone_number,
)


class TestNormalization:
    """Tests for normalize_phone_number()."""

    @pytest.mark.parametrize("raw,expected", [
        ("07912345678", "+447912345678"),
        ("01632960123", "+441632960123"),
        ("020 7946 0000", "+442079460000"),
        ("+14155551234", "+14155551234"),
        ("7912345678", "+447912345678"),
        ("(0161) 496-0000", "+441614960000"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_phone_number(raw) == expected

    def test_custom_country_code(self):
        """Numbers without a prefix take the configured country code."""
        assert normalize_phone_number("4155551234", country_code="+1") == "+14155551234"

    def test_other_leading_zero_is_not_rewritten(self):
        """Only 07, 01 and 02 are treated as national prefixes."""
        assert normalize_phone_number("0800123456") == "+440800123456"

    @pytest.mark.parametrize("raw", ["", "   ", None, "--"])
    def test_empty_rejected(self, raw):
        with pytest.raises(InvalidPhoneNumberError):
            normalize_phone_number(raw)


class TestMasking:
    """Tests for mask_phone_number()."""

    def test_mask_keeps_last_digits(self):
        assert mask_phone_number("+447912345678") == "***78"

    def test_mask_non_numeric_identity(self):
        assert mask_phone_number("Reception") == "***"

    def test_mask_missing(self):
        assert mask_phone_number(None) == "unknown"


class TestHelpers:
    """Tests for validation and duration formatting."""

    @pytest.mark.parametrize("raw,valid", [
        ("07912345678", True),
        ("+1 415 555 1234", True),
        ("12345", False),
        ("", False),
    ])
    def test_validate(self, raw, valid):
        assert validate_phone_number(raw) is valid

    @pytest.mark.parametrize("seconds,display", [
        (0, "00:00"),
        (45, "00:45"),
        (125, "02:05"),
        (3600, "60:00"),
    ])
    def test_format_duration(self, seconds, display):
        assert format_duration(seconds) == display
