from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any

from sqlalchemy.types import DateTime as _DateTime
from sqlalchemy.types import String, TypeDecorator

from src.utils.money import _to_decimal
from src.utils.time import UTC


class UTCDateTime(TypeDecorator):
    """
    Store datetimes as UTC and always return tz-aware UTC datetimes.

    SQLite doesn't have a native timezone-aware datetime type. This decorator treats
    naive datetimes as UTC and attaches tzinfo on read.
    """

    impl = _DateTime
    cache_ok = True

    def process_bind_param(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        v = value
        if v.tzinfo is None:
            v = v.replace(tzinfo=UTC)
        v = v.astimezone(UTC)
        # Store as naive UTC for broad DB compatibility.
        return v.replace(tzinfo=None)

    def process_result_value(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        v = value
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)


class TokenAmount(TypeDecorator):
    """
    Exact token quantities (up to 18 decimals) stored as text.

    SQLite's NUMERIC affinity goes through float, which is not exact for wei-scale amounts.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect):
        if value is None:
            return None
        d = _to_decimal(value)
        if d is None:
            raise ValueError(f"Not a numeric token amount: {value!r}")
        return format(d.normalize(), "f")

    def process_result_value(self, value: Any, dialect):
        if value is None:
            return None
        return Decimal(str(value))
