"""Column type planning and value decoding for change query results."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from psycopg2.extensions import string_types

from ..errors import InternalError


class ColumnKind(enum.Enum):
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    TIME = "time"
    JSON = "json"
    STRING = "string"


# builtin PostgreSQL type OIDs
_OID_KINDS: Dict[int, ColumnKind] = {
    16: ColumnKind.BOOLEAN,  # bool
    20: ColumnKind.INTEGER,  # int8
    21: ColumnKind.INTEGER,  # int2
    23: ColumnKind.INTEGER,  # int4
    26: ColumnKind.INTEGER,  # oid
    700: ColumnKind.FLOAT,  # float4
    701: ColumnKind.FLOAT,  # float8
    1700: ColumnKind.FLOAT,  # numeric
    1082: ColumnKind.TIME,  # date
    1083: ColumnKind.TIME,  # time
    1114: ColumnKind.TIME,  # timestamp
    1184: ColumnKind.TIME,  # timestamptz
    1266: ColumnKind.TIME,  # timetz
    114: ColumnKind.JSON,  # json
    3802: ColumnKind.JSON,  # jsonb
}

# psycopg2 typecaster names, for types registered at runtime
_CASTER_KINDS: Dict[str, ColumnKind] = {
    "BOOLEAN": ColumnKind.BOOLEAN,
    "INTEGER": ColumnKind.INTEGER,
    "LONGINTEGER": ColumnKind.INTEGER,
    "FLOAT": ColumnKind.FLOAT,
    "DECIMAL": ColumnKind.FLOAT,
    "DATE": ColumnKind.TIME,
    "TIME": ColumnKind.TIME,
    "DATETIME": ColumnKind.TIME,
    "DATETIMETZ": ColumnKind.TIME,
    "JSON": ColumnKind.JSON,
    "JSONB": ColumnKind.JSON,
}


@dataclass(frozen=True)
class ColumnPlan:
    """Decode target chosen for one result column."""

    name: str
    kind: ColumnKind
    type_code: int

    def decode(self, value: Any) -> Any:
        return decode_value(self.kind, value)


def kind_for_type(type_code: int) -> ColumnKind:
    kind = _OID_KINDS.get(type_code)
    if kind is not None:
        return kind
    caster = string_types.get(type_code)
    if caster is not None:
        return _CASTER_KINDS.get(getattr(caster, "name", ""), ColumnKind.STRING)
    return ColumnKind.STRING


def plan_columns(description: Optional[Sequence[Sequence[Any]]]) -> List[ColumnPlan]:
    """Build one decode plan per column of a cursor description.

    Column names are lower-cased. A column without a type code means the
    driver cannot describe the result, which is fatal for the whole query.
    """
    if description is None:
        raise InternalError("query returned no column description")
    plans: List[ColumnPlan] = []
    for column in description:
        name, type_code = column[0], column[1]
        if type_code is None:
            raise InternalError(f"no scan type for column {name}")
        plans.append(
            ColumnPlan(name=str(name).lower(), kind=kind_for_type(type_code), type_code=type_code)
        )
    return plans


def decode_value(kind: ColumnKind, value: Any) -> Any:
    if value is None:
        return None
    if kind is ColumnKind.BOOLEAN:
        return bool(value)
    if kind is ColumnKind.INTEGER:
        return int(value)
    if kind is ColumnKind.FLOAT:
        number = float(value) if isinstance(value, (Decimal, int, float)) else float(str(value))
        if number.is_integer():
            return int(number)
        return number
    if kind is ColumnKind.TIME:
        if isinstance(value, (datetime, time)):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        return value
    if kind is ColumnKind.JSON:
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return value if isinstance(value, str) else str(value)


__all__ = ["ColumnKind", "ColumnPlan", "decode_value", "kind_for_type", "plan_columns"]
