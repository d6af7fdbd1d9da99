from __future__ import annotations

import datetime as dt
from decimal import Decimal

from src.utils.money import format_amount, format_usd, quantize_usd, to_decimal, usd_str
from src.utils.time import UTC, format_date, parse_datetime, year_bounds


def test_quantize_half_up():
    assert quantize_usd("2.345") == Decimal("2.35")
    assert quantize_usd(Decimal("-2.345")) == Decimal("-2.35")
    assert quantize_usd(None) == Decimal("0.00")
    assert usd_str("1,234.5") == "1234.50"


def test_to_decimal_rejects_garbage():
    assert to_decimal("abc") == Decimal("0")
    assert to_decimal("NaN", default=Decimal("1")) == Decimal("1")
    assert to_decimal(0.1) == Decimal("0.1")


def test_formatters():
    assert format_usd(None) == "-"
    assert format_usd(Decimal("-1234.567")) == "-$1,234.57"
    assert format_amount(Decimal("0.123456")) == "0.1235"
    assert format_amount(None) == "0"


def test_datetimes_are_utc():
    d = parse_datetime("2024-03-05T10:00:00.000Z")
    assert d == dt.datetime(2024, 3, 5, 10, 0, tzinfo=UTC)
    assert parse_datetime("") is None
    assert format_date(d) == "2024-03-05"
    start, end = year_bounds(2024)
    assert start == dt.datetime(2024, 1, 1, tzinfo=UTC)
    assert end == dt.datetime(2025, 1, 1, tzinfo=UTC)
