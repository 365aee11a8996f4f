"""
Kenyan mobile number normalization for M-Pesa.

The gateway only accepts the 12-digit international form, e.g. ``254712345678``.
"""
import re

from afya.errors import ValidationError

COUNTRY_CODE = '254'
CANONICAL_LENGTH = 12

_NON_DIGITS = re.compile(r'\D')


def normalize_phone(phone):
    digits = _NON_DIGITS.sub('', phone or '')
    if digits.startswith('0'):
        return COUNTRY_CODE + digits[1:]
    if digits.startswith(COUNTRY_CODE):
        return digits
    if len(digits) == 9:
        return COUNTRY_CODE + digits
    # Anything else passes through and fails validation
    return digits


def is_valid_phone(phone):
    formatted = normalize_phone(phone)
    return len(formatted) == CANONICAL_LENGTH and formatted.startswith(COUNTRY_CODE)


def require_valid_phone(phone):
    """Return the canonical form of ``phone`` or raise ValidationError."""
    formatted = normalize_phone(phone)
    if len(formatted) != CANONICAL_LENGTH or not formatted.startswith(COUNTRY_CODE):
        raise ValidationError(
            'Please enter a valid Kenyan phone number (e.g., 0700000000)')
    return formatted
