"""Irish mobile number validation and formatting."""

import re
from typing import Optional

VALID_PREFIXES = ("083", "085", "086", "087", "089")

_NON_DIAL_CHARS = re.compile(r"[^\d+]")
_IRISH_MOBILE = re.compile(r"^(?:08[35679]\d{7}|\+353(?:83|85|86|87|89)\d{7})$")
_NATIONAL_NO_TRUNK = re.compile(r"^(?:83|85|86|87|89)\d{7}$")
_SUBSCRIBER_NO_EIGHT = re.compile(r"^[35679]\d{7}$")


def clean_phone_number(phone_number: str) -> str:
    """Strip everything except digits and '+'."""
    return _NON_DIAL_CHARS.sub("", phone_number or "")


def validate_irish_mobile(phone_number: Optional[str]) -> Optional[str]:
    """
    Validate an Irish mobile number.

    Args:
        phone_number: Number as typed by the patient

    Returns:
        None if valid, otherwise a user-facing error message
    """
    if not phone_number:
        return "Phone number is required"

    cleaned = clean_phone_number(phone_number)
    if _IRISH_MOBILE.match(cleaned):
        return None

    prefixes = ", ".join(VALID_PREFIXES)
    if cleaned.startswith("+353"):
        if len(cleaned) != 13:
            return "International format must be 13 characters (+353 + 9 digits)"
        prefix = cleaned[4:7]
        if prefix not in VALID_PREFIXES:
            return f"Invalid prefix {prefix}. Must be one of: {prefixes}"
    elif cleaned.startswith("0"):
        if len(cleaned) != 10:
            return "Local format must be 10 digits (08X XXXXXXX)"
        prefix = cleaned[0:3]
        if prefix not in VALID_PREFIXES:
            return f"Invalid prefix {prefix}. Must be one of: {prefixes}"
    else:
        return "Number must start with 0 (local) or +353 (international)"

    return "Invalid Irish mobile number"


def format_irish_mobile(phone_number: Optional[str]) -> Optional[str]:
    """
    Convert a mobile number to international ``+353`` form.

    Returns:
        Formatted number, or None if the shape is not recognised
    """
    if not phone_number:
        return None

    cleaned = clean_phone_number(phone_number)
    if cleaned.startswith("+353"):
        return cleaned
    if cleaned.startswith("0"):
        return "+353" + cleaned[1:]
    if _NATIONAL_NO_TRUNK.match(cleaned):
        return "+353" + cleaned
    if _SUBSCRIBER_NO_EIGHT.match(cleaned):
        return "+3538" + cleaned
    return None


def format_phone_for_display(phone_number: Optional[str]) -> str:
    """Group digits as ``+353 XX XXX XXXX`` or ``0XX XXX XXXX``."""
    if not phone_number:
        return ""

    cleaned = clean_phone_number(phone_number)
    if cleaned.startswith("+353"):
        number = cleaned[4:]
        if len(number) == 9:
            return f"+353 {number[:2]} {number[2:5]} {number[5:]}"
    if cleaned.startswith("0") and len(cleaned) == 10:
        return f"{cleaned[:3]} {cleaned[3:6]} {cleaned[6:]}"
    return phone_number


def format_and_validate(phone_number: Optional[str]) -> Optional[str]:
    """Return the international form of a valid number, else None."""
    if validate_irish_mobile(phone_number) is not None:
        return None
    return format_irish_mobile(phone_number)
