# utils/phone.py
import re
from typing import Optional

from app.core.errors import InvalidPhoneFormat

COUNTRY_CODE = "254"
SUBSCRIBER_DIGITS = 9

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str, country_code: str = COUNTRY_CODE) -> str:
    """
    Convert the phone formats people actually type into the 2547XXXXXXXX
    form Daraja expects.

    Accepted, in order: 0712345678, 712345678, 254712345678, +254712345678
    (spaces, dashes and brackets are ignored).
    """
    if not raw:
        raise InvalidPhoneFormat(raw)

    digits = _NON_DIGITS.sub("", str(raw))

    if digits.startswith("0") and len(digits) == SUBSCRIBER_DIGITS + 1:
        return country_code + digits[1:]
    if digits.startswith("7") and len(digits) == SUBSCRIBER_DIGITS:
        return country_code + digits
    if digits.startswith(country_code) and len(digits) == len(country_code) + SUBSCRIBER_DIGITS:
        return digits

    raise InvalidPhoneFormat(raw)


def mask_phone(phone: Optional[str]) -> str:
    """Keep phone numbers out of logs: 254712345678 -> ***678"""
    if not phone:
        return "***"
    return "***" + str(phone)[-3:]
