# solar_portal/utils/phone.py
from typing import Optional

import phonenumbers

DEFAULT_REGION = "MT"


def normalize_phone(raw: Optional[str]) -> str:
    """
    Digits only; a bare 8-digit local number gets the 356 country code.

    This is the storage/matching form, not E.164 (no leading '+').
    """
    digits = "".join(ch for ch in (raw or "") if ch.isdigit())
    if len(digits) == 8:
        return "356" + digits
    return digits


def last_digits(raw: Optional[str], n: int = 8) -> str:
    digits = "".join(ch for ch in (raw or "") if ch.isdigit())
    return digits[-n:] if len(digits) >= n else ""


def to_e164(raw: Optional[str], region: str = DEFAULT_REGION) -> Optional[str]:
    """Format for SMS delivery. Returns None when phonenumbers rejects the number."""
    if not raw:
        return None
    candidate = raw.strip()
    digits = normalize_phone(candidate)
    if not candidate.startswith("+") and digits.startswith("356"):
        candidate = "+" + digits
    try:
        parsed = phonenumbers.parse(candidate, region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
