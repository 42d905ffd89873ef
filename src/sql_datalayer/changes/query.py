"""SQL builders for since-bounded change queries."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from ..config import DATA_QUERY, ENTITY_COLUMN, SINCE_COLUMN, SINCE_TABLE, TABLE_NAME, DatasetDefinition
from ..errors import ConfigurationError
from .token import decode_token

_WHERE = re.compile(r"\bwhere\b", re.IGNORECASE)


@dataclass(frozen=True)
class ChangeQuery:
    """SQL text with ``%s`` placeholders and the parameters bound to them."""

    text: str
    params: Tuple[Any, ...] = ()


def select_columns(definition: DatasetDefinition) -> str:
    outgoing = definition.outgoing_mapping_config
    if outgoing is None:
        if definition.get_option(ENTITY_COLUMN):
            return "*"
        raise ConfigurationError(
            f"outgoing mapping config is missing for dataset {definition.name}"
        )
    if outgoing.map_all:
        return "*"
    columns = [pm.property.lower() for pm in outgoing.property_mappings]
    if not columns:
        raise ConfigurationError(
            f"outgoing mapping for dataset {definition.name} declares no columns"
        )
    return ", ".join(columns)


def max_since_query(definition: DatasetDefinition) -> str:
    """Snapshot probe over the since-table, or the data table without one."""
    since_column = definition.get_option(SINCE_COLUMN)
    since_table = definition.get_option(SINCE_TABLE) or definition.get_option(TABLE_NAME)
    if not since_column:
        raise ConfigurationError(f"dataset {definition.name} has no since_column")
    if not since_table:
        raise ConfigurationError(
            f"dataset {definition.name} needs table_name or since_table to probe {since_column}"
        )
    return f'SELECT MAX({since_column}) AS "_max_since" FROM {since_table}'


def build_query(
    definition: DatasetDefinition,
    since: str,
    max_since: Optional[datetime],
    limit: int,
) -> ChangeQuery:
    """Build the change query for one page.

    The range predicate is only applied when the snapshot bound is known; an
    empty ``since`` selects everything up to the bound (first page).
    """
    table_name = definition.get_option(TABLE_NAME)
    data_query = definition.get_option(DATA_QUERY)
    since_column = definition.get_option(SINCE_COLUMN)
    since_table = definition.get_option(SINCE_TABLE)

    if data_query:
        query = data_query.strip().rstrip(";")
    elif table_name:
        query = f"SELECT {select_columns(definition)} FROM {table_name}"
    else:
        raise ConfigurationError(
            f"dataset {definition.name} needs either table_name or data_query"
        )

    params: list[Any] = []
    if max_since is not None and since_column:
        qualifier = since_table or table_name
        column = f"{qualifier}.{since_column}" if qualifier else since_column
        connector = " AND " if _WHERE.search(query) else " WHERE "
        if since:
            lower_bound = decode_token(since)
            predicate = f"{column} > %s AND {column} <= %s"
            params.extend([lower_bound, max_since])
        else:
            predicate = f"{column} <= %s"
            params.append(max_since)
        if data_query:
            query = query.replace("%", "%%")
        query = f"{query}{connector}{predicate}"

    if limit and limit > 0:
        query = f"{query} LIMIT {int(limit)}"
    return ChangeQuery(text=query, params=tuple(params))


__all__ = ["ChangeQuery", "build_query", "max_since_query", "select_columns"]
