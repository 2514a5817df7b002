"""Tests for national health identifier checks."""

from __future__ import annotations

import pytest

from medsafe.services import identifier_service

VALID = "9434765919"


@pytest.mark.parametrize(
    "identifier",
    [VALID, "9434765870", "943 476 5919", "943-476-5919"],
)
def test_valid_identifiers(identifier: str) -> None:
    assert identifier_service.validate_identifier(identifier) is True


@pytest.mark.parametrize(
    "identifier",
    ["9434765918", "943476591", "94347659190", "", None, "abcdefghij"],
)
def test_invalid_identifiers(identifier: str | None) -> None:
    assert identifier_service.validate_identifier(identifier) is False


def test_check_value_of_ten_is_never_valid() -> None:
    # first nine digits weigh to a remainder of 1, so the check value is 10
    for last in "0123456789":
        assert identifier_service.validate_identifier(f"943476596{last}") is False


def test_any_single_digit_change_invalidates() -> None:
    for position in range(len(VALID)):
        for digit in "0123456789":
            if digit == VALID[position]:
                continue
            mutated = VALID[:position] + digit + VALID[position + 1 :]
            assert identifier_service.validate_identifier(mutated) is False, mutated


def test_format_and_normalise() -> None:
    assert identifier_service.normalise_identifier(" 943-476 5919 ") == VALID
    assert identifier_service.format_identifier(VALID) == "943 476 5919"
    assert identifier_service.format_identifier("12345") == "12345"
