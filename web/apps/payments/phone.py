import re

from apps.orders.errors import ValidationFailed

_NON_DIGITS = re.compile(r"\D")


def normalize_msisdn(phone: str, country_code: str = "254") -> str:
    """Normalize a local or international phone number to ``<cc><subscriber>`` digits.

    Handles ``0712345678``, ``712345678``, ``254712345678`` and
    ``+254 712 345 678`` alike.

    Raises:
        ValidationFailed: If no usable digits are left.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if digits.startswith(country_code):
        normalized = digits
    elif digits.startswith("0"):
        normalized = country_code + digits[1:]
    else:
        normalized = country_code + digits
    if len(normalized) <= len(country_code):
        raise ValidationFailed([{"field": "phone", "message": "Phone number is required"}])
    return normalized
