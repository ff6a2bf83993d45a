"""
Phone number normalization to E.164.
"""

import re

# E.164 phone number pattern
E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")

_FORMATTING = re.compile(r"[\s\-\.\(\)]")


def normalize_phone_number(phone: str | None) -> str | None:
    """Normalize phone number to E.164 format.

    Bare 10-digit numbers (and 11-digit numbers with a leading 1) are read as
    North American numbers.

    Args:
        phone: Raw phone number string.

    Returns:
        Normalized phone number or None if invalid.
    """
    if not phone:
        return None

    cleaned = _FORMATTING.sub("", phone.strip())

    if E164_PATTERN.match(cleaned):
        return cleaned

    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]
        return cleaned if E164_PATTERN.match(cleaned) else None

    if cleaned.isdigit():
        if len(cleaned) == 10 and cleaned[0] in "23456789":
            return "+1" + cleaned
        if len(cleaned) == 11 and cleaned.startswith("1"):
            return "+" + cleaned

    return None


def area_code(phone: str) -> str | None:
    """Return the North American area code of an E.164 number, if any."""
    if phone.startswith("+1") and len(phone) == 12:
        return phone[2:5]
    return None
