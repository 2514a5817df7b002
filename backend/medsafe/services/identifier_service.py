"""National health identifier (NHS number) checks."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

IDENTIFIER_LENGTH = 10
_MODULUS = 11


def normalise_identifier(identifier: str | None) -> str:
    """Return only the digits of ``identifier`` (spaces and dashes are common)."""
    if not identifier:
        return ""
    return "".join(ch for ch in identifier if ch.isdigit())


def _check_digit(digits: str) -> int | None:
    total = sum(int(digit) * (IDENTIFIER_LENGTH - index) for index, digit in enumerate(digits[:9]))
    check = _MODULUS - (total % _MODULUS)
    if check == _MODULUS:
        return 0
    if check == 10:
        return None
    return check


def validate_identifier(identifier: str | None) -> bool:
    """Return True when the identifier carries a valid modulus-11 check digit.

    Non-digit characters are stripped first. Anything that is not exactly ten
    digits afterwards is invalid, as is a number whose computed check value is 10.
    """
    digits = normalise_identifier(identifier)
    if len(digits) != IDENTIFIER_LENGTH:
        return False
    expected = _check_digit(digits)
    return expected is not None and expected == int(digits[9])


def format_identifier(identifier: str | None) -> str:
    """Render a valid-length identifier in the 3-3-4 grouping used on charts."""
    digits = normalise_identifier(identifier)
    if len(digits) != IDENTIFIER_LENGTH:
        return digits
    return f"{digits[:3]} {digits[3:6]} {digits[6:]}"


__all__ = ["format_identifier", "normalise_identifier", "validate_identifier"]
