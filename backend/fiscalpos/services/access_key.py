"""
Access key generation (49 digits, modulo-11 check digit).

LAYOUT:
    ddmmyyyy | doc code (2) | tax id (13) | env (1) | establishment (3)
    | emission point (3) | sequential (9) | numeric code (8) | emission type (1)
    | check digit (1)
"""

from __future__ import annotations

import secrets
from datetime import date


DOC_CODE_INVOICE = "01"
DOC_CODE_CREDIT_NOTE = "04"

ENVIRONMENT_DIGITS = {"test": "1", "production": "2"}
EMISSION_TYPE_NORMAL = "1"

ACCESS_KEY_LENGTH = 49


class AccessKeyError(ValueError):
    pass


def mod11_check_digit(digits: str) -> str:
    """Weights 2..7 cycle from the rightmost digit; 11 -> 0, 10 -> 1."""
    total = 0
    weight = 2
    for ch in reversed(digits):
        total += int(ch) * weight
        weight = 2 if weight == 7 else weight + 1
    check = 11 - (total % 11)
    if check == 11:
        return "0"
    if check == 10:
        return "1"
    return str(check)


def random_numeric_code() -> str:
    return f"{secrets.randbelow(10 ** 8):08d}"


def _digits(value: str, length: int, label: str) -> str:
    value = (value or "").strip()
    if len(value) != length or not value.isdigit():
        raise AccessKeyError(f"{label} must be exactly {length} digits")
    return value


def generate_access_key(
    *,
    issue_date: date,
    document_code: str,
    tax_id: str,
    environment: str,
    establishment_code: str,
    emission_point: str,
    sequential: int,
    numeric_code: str | None = None,
) -> str:
    if environment not in ENVIRONMENT_DIGITS:
        raise AccessKeyError(f"Unknown environment: {environment}")
    if not 0 < sequential < 10 ** 9:
        raise AccessKeyError("sequential out of range")

    body = "".join([
        issue_date.strftime("%d%m%Y"),
        _digits(document_code, 2, "document code"),
        _digits(tax_id, 13, "tax id"),
        ENVIRONMENT_DIGITS[environment],
        _digits(establishment_code, 3, "establishment code"),
        _digits(emission_point, 3, "emission point"),
        f"{sequential:09d}",
        _digits(numeric_code or random_numeric_code(), 8, "numeric code"),
        EMISSION_TYPE_NORMAL,
    ])
    return body + mod11_check_digit(body)


def is_valid_access_key(key: str) -> bool:
    if not key or len(key) != ACCESS_KEY_LENGTH or not key.isdigit():
        return False
    return mod11_check_digit(key[:-1]) == key[-1]
