import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def digits_only(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def normalize_whatsapp_phone(value: Optional[str]) -> str:
    """Normalize a WhatsApp sender address to a canonical digit string.

    Brazilian mobiles are sometimes delivered without the ninth digit
    (55 + DDD + 8 digits); those get the 9 back after the area code. An
    11-digit number starting with 55 is a local number from DDD 55 and
    gets the country code prepended.
    """
    digits = digits_only(value)
    if len(digits) == 12 and digits.startswith("55"):
        return digits[:4] + "9" + digits[4:]
    if len(digits) == 11 and digits.startswith("55"):
        return "55" + digits
    return digits


def phone_matches(stored_phone: Optional[str], address: str) -> bool:
    """Stored customer phones may lack the country code."""
    stored_digits = digits_only(stored_phone)
    if not stored_digits or not address:
        return False
    return stored_digits == address or f"55{stored_digits}" == address
