"""SQL literal rendering for the batched insert block."""

from __future__ import annotations

import json
import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from ..errors import InternalError

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S%z"


def quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def parse_rfc3339(text: str) -> datetime:
    """Parse an RFC 3339 timestamp; an offset (or ``Z``) is mandatory."""
    candidate = text.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError(f"{text!r} is not an RFC 3339 timestamp") from exc
    if parsed.tzinfo is None:
        raise ValueError(f"{text!r} has no UTC offset")
    return parsed


def render_literal(value: Any, datatype: str = "") -> str:
    """Render ``value`` as an inline SQL literal for a column of ``datatype``."""
    if value is None:
        return "NULL"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "'true'" if value else "'false'"
    if isinstance(value, datetime):
        fmt = TIMESTAMP_FORMAT if datatype == "timestamp" and value.tzinfo else DATETIME_FORMAT
        return quote(value.strftime(fmt))
    if isinstance(value, date):
        return quote(value.isoformat())
    if isinstance(value, str):
        if datatype in ("datetime", "timestamp"):
            try:
                parsed = parse_rfc3339(value)
            except ValueError as exc:
                raise InternalError(f"cannot render {datatype} value: {exc}") from exc
            fmt = DATETIME_FORMAT if datatype == "datetime" else TIMESTAMP_FORMAT
            return quote(parsed.strftime(fmt))
        return quote(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return quote(str(value))
        return repr(value)
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        try:
            return quote(json.dumps(value, default=str))
        except (TypeError, ValueError) as exc:
            raise InternalError(f"cannot render value {value!r}: {exc}") from exc
    return quote(str(value))


__all__ = ["DATETIME_FORMAT", "TIMESTAMP_FORMAT", "parse_rfc3339", "quote", "render_literal"]
