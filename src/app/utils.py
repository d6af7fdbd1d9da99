from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any


def jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return str(value)


def row_to_dict(row: Any, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    return {c.name: jsonable(getattr(row, c.key)) for c in row.__table__.columns if c.name not in exclude}


def error(message: str, **extra: Any) -> dict[str, Any]:
    return {"ok": False, "error": message, **extra}
