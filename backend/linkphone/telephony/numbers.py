"""
The Link Phone - Phone Number Utilities

Dial-string normalization and masking for logs and call history.

IMPORTANT:
    Raw phone numbers must never be logged. Use mask_phone_number()
    whenever a number appears in a log line or a history record.
"""

import re
from typing import Optional

from linkphone.core.exceptions import InvalidPhoneNumberError

# UK national prefixes rewritten to the international form
NATIONAL_TRUNK_PREFIXES = ("07", "01", "02")

_SEPARATORS = re.compile(r"[\s\-\.\(\)]")


def mask_phone_number(number: Optional[str], show_last_digits: int = 2) -> str:
    """
    Mask a phone number for privacy.

    Examples:
        +447912345678 → ***78
        07912345678   → ***78
        Unknown       → ***
        None          → unknown
    """
    if not number:
        return "unknown"

    digits = re.sub(r'\D', '', str(number))

    if len(digits) < show_last_digits:
        return "***"

    return f"***{digits[-show_last_digits:]}"


def validate_phone_number(number: Optional[str]) -> bool:
    """
    Validate that a string looks like a dialable phone number.

    Phone numbers are typically 7-15 digits (E.164 upper bound).
    """
    if not number:
        return False

    digits = re.sub(r'\D', '', str(number))
    return 7 <= len(digits) <= 15


def normalize_phone_number(number: Optional[str], country_code: str = "+44") -> str:
    """
    Normalize a dialled number before handing it to the phone adapter.

    - Leading 07/01/02 (UK national format) → country code + number without the 0
    - Already international (+...) → unchanged
    - Anything else → country code prepended

    Separators (spaces, dashes, dots, parentheses) are stripped first.

    Raises:
        InvalidPhoneNumberError: If nothing dialable remains
    """
    cleaned = _SEPARATORS.sub("", number or "")
    if not cleaned:
        raise InvalidPhoneNumberError("Phone number is required")

    if cleaned.startswith(NATIONAL_TRUNK_PREFIXES):
        return country_code + cleaned[1:]
    if cleaned.startswith("+"):
        return cleaned
    return country_code + cleaned


def format_duration(seconds: int) -> str:
    """Format a call duration as mm:ss."""
    mins, secs = divmod(max(0, int(seconds)), 60)
    return f"{mins:02d}:{secs:02d}"
