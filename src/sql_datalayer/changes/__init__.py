"""Read path: since-bounded change queries streamed as entities."""

from .decoder import ColumnKind, ColumnPlan, decode_value, plan_columns
from .iterator import ChangeIterator, IteratorState
from .query import ChangeQuery, build_query, max_since_query, select_columns
from .token import decode_token, encode_token

__all__ = [
    "ChangeIterator",
    "ChangeQuery",
    "ColumnKind",
    "ColumnPlan",
    "IteratorState",
    "build_query",
    "decode_token",
    "decode_value",
    "encode_token",
    "max_since_query",
    "plan_columns",
    "select_columns",
]
