"""
Phone normalization to canonical E.164 form.
Used as the join key between bookings and inbound messages.
"""
import re

from bookingflow.errors import InvalidPhoneError

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
WHATSAPP_PREFIX = "whatsapp:"


def normalize_e164(raw_phone: str, default_country: str = "IL") -> str:
    """
    Normalize freeform phone input to E.164.

    Args:
        raw_phone: Input such as "050-123 4567", "+972501234567" or "whatsapp:+972..."
        default_country: Country rules applied to numbers without a "+" prefix

    Returns:
        E.164 string, or "" when the input holds no digits
    """
    raw = (raw_phone or "").strip()
    if raw.lower().startswith(WHATSAPP_PREFIX):
        raw = raw[len(WHATSAPP_PREFIX):]
    raw = re.sub(r"[\s\-]", "", raw)
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return ""

    if raw.startswith("+"):
        return "+" + digits

    if default_country == "IL":
        if len(digits) == 10 and digits.startswith("0"):
            return "+972" + digits[1:]
        if len(digits) == 9 and not digits.startswith("0"):
            return "+972" + digits
        if len(digits) == 12 and digits.startswith("972"):
            return "+" + digits

    return "+" + digits


def is_valid_e164(raw_phone: str, default_country: str = "IL") -> bool:
    return bool(E164_PATTERN.match(normalize_e164(raw_phone, default_country)))


def require_e164(raw_phone: str, default_country: str = "IL") -> str:
    """Normalize or raise InvalidPhoneError"""
    phone = normalize_e164(raw_phone, default_country)
    if not E164_PATTERN.match(phone):
        raise InvalidPhoneError(f"Unparseable phone number: {raw_phone!r}")
    return phone


def to_channel_address(phone: str, channel: str = "whatsapp", default_country: str = "IL") -> str:
    """Provider address for a phone: "whatsapp:+972..." or plain "+972..." for SMS"""
    e164 = require_e164(phone, default_country)
    if channel == "whatsapp":
        return WHATSAPP_PREFIX + e164
    return e164
