import math
from datetime import date, datetime

import pytest

from ledger_migration.services.coercion import (
    format_address,
    is_blank,
    money,
    to_bool,
    to_date_string,
    to_float,
    to_int,
)


@pytest.mark.parametrize("value,expected", [
    ("12.50", 12.5),
    (" 3 ", 3.0),
    (7, 7.0),
    ("abc", 0.0),
    (None, 0.0),
    ("", 0.0),
    ("nan", 0.0),
    ("inf", 0.0),
    (float("-inf"), 0.0),
])
def test_to_float_never_yields_nan_or_infinity(value, expected):
    result = to_float(value)

    assert result == expected
    assert not math.isnan(result)


def test_to_int_truncates_and_falls_back_to_zero():
    assert to_int("42") == 42
    assert to_int("42.9") == 42
    assert to_int("not a number") == 0
    assert to_int(None) == 0


@pytest.mark.parametrize("value,expected", [
    (True, True),
    ("true", True),
    ("TRUE", True),
    ("1", True),
    ("false", False),
    ("no", False),
    (0, False),
])
def test_to_bool(value, expected):
    assert to_bool(value) is expected


def test_to_date_string_normalizes_formats():
    assert to_date_string("2024-03-05") == "2024-03-05"
    assert to_date_string("2024-03-05T10:11:12-07:00") == "2024-03-05"
    assert to_date_string("March 5, 2024") == "2024-03-05"
    assert to_date_string(date(2024, 3, 5)) == "2024-03-05"
    assert to_date_string(datetime(2024, 3, 5, 23, 59)) == "2024-03-05"


def test_to_date_string_unparsable_is_none():
    assert to_date_string("not a date") is None
    assert to_date_string("") is None
    assert to_date_string(None) is None


def test_format_address_joins_present_parts():
    address = {
        "Line1": "123 Main St",
        "Line2": "",
        "City": "Springfield",
        "CountrySubDivisionCode": "IL",
        "PostalCode": "62701",
        "Country": "USA",
    }

    assert format_address(address) == "123 Main St\nSpringfield, IL, 62701\nUSA"


def test_format_address_empty_is_none():
    assert format_address({}) is None
    assert format_address(None) is None
    assert format_address("  Suite 9  ") == "Suite 9"


def test_is_blank_only_for_none_and_empty_string():
    assert is_blank(None)
    assert is_blank("")
    assert not is_blank(0)
    assert not is_blank(False)
    assert not is_blank(" ")


def test_money_rounds_to_cents():
    assert money({"Amount": "10.005"}, "Amount") == pytest.approx(10.0, abs=0.011)
    assert money({"Amount": 19.999}, "Amount") == 20.0
    assert money({}, "Amount") == 0.0
