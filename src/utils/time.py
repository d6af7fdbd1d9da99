from __future__ import annotations

import datetime as dt
from typing import Any

UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value: Any) -> dt.datetime | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        # Support "Z" suffix.
        s = s.replace("Z", "+00:00")
        try:
            return ensure_utc(dt.datetime.fromisoformat(s))
        except ValueError:
            return None
    return None


def year_bounds(year: int) -> tuple[dt.datetime, dt.datetime]:
    """[Jan 1 of `year`, Jan 1 of `year + 1`) in UTC."""
    return dt.datetime(year, 1, 1, tzinfo=UTC), dt.datetime(year + 1, 1, 1, tzinfo=UTC)


def format_date(value: Any) -> str:
    d = parse_datetime(value)
    if d is None:
        return "-"
    return d.date().isoformat()
