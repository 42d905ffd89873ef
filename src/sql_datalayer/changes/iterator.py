"""Lazy iterator over the entities changed since a continuation token."""

from __future__ import annotations

import enum
import json
import logging
from datetime import datetime
from typing import Any, Iterator, List, Optional

from psycopg2 import Error

from ..config import ENTITY_COLUMN, SINCE_COLUMN, DatasetDefinition
from ..errors import InternalError, LayerError
from ..mapping import Mapper, MappingError, RowItem
from ..model import CONTEXT_ID, Continuation, Entity, EntityParser, NamespaceContext
from .decoder import ColumnKind, ColumnPlan, plan_columns
from .query import build_query, max_since_query
from .token import encode_token

logger = logging.getLogger(__name__)


class IteratorState(enum.Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    EXHAUSTED = "exhausted"
    ERRORED = "errored"
    CLOSED = "closed"


class ChangeIterator:
    """Streams one page of changes from a dataset's table.

    The connection is owned by the iterator until :meth:`close`; ``release``
    is called with it exactly once. The sequence is not restartable: request a
    new iterator with the returned token to continue.
    """

    def __init__(
        self,
        definition: DatasetDefinition,
        mapper: Mapper,
        conn: Any,
        *,
        since: str = "",
        limit: int = 0,
        itersize: int = 2000,
        release: Optional[Any] = None,
    ) -> None:
        self._definition = definition
        self._mapper = mapper
        self._conn = conn
        self._release = release
        self._since = since
        self._limit = limit
        self._itersize = itersize
        self._entity_column = definition.get_option(ENTITY_COLUMN).lower()
        self._since_column = definition.get_option(SINCE_COLUMN)
        self._cursor: Any = None
        self._plans: Optional[List[ColumnPlan]] = None
        self._token = ""
        self.max_since: Optional[datetime] = None
        self.state = IteratorState.INITIALIZING

    @property
    def name(self) -> str:
        return self._definition.name

    def start(self) -> "ChangeIterator":
        """Probe the snapshot bound and open the change query."""
        try:
            self._start()
        except LayerError:
            self._fail()
            raise
        except Error as exc:
            self._fail()
            logger.error("failed to execute changes query for %s: %s", self.name, exc)
            raise InternalError(f"changes query failed for dataset {self.name}: {exc}") from exc
        self.state = IteratorState.READY
        return self

    def _start(self) -> None:
        if self._since_column:
            self._probe_max_since()

        query = build_query(self._definition, self._since, self.max_since, self._limit)
        logger.debug("changes query for dataset %s: %s %s", self.name, query.text, query.params)

        # named cursors stream rows from the server in itersize batches
        self._cursor = self._conn.cursor(name=f"changes_{self.name}")
        self._cursor.itersize = self._itersize
        self._cursor.execute(query.text, query.params or None)
        if self._cursor.description is not None:
            self._plans = plan_columns(self._cursor.description)

    def _probe_max_since(self) -> None:
        with self._conn.cursor() as cur:
            cur.execute(max_since_query(self._definition))
            row = cur.fetchone()
        if row is None:
            logger.error("failed to get max since for %s: no data", self.name)
            raise InternalError(f"failed to get max since for dataset {self.name}")
        value = row[0]
        if value is None:
            # empty since-table: nothing to bound, keep the caller's position
            self._token = self._since
            return
        if not isinstance(value, datetime):
            logger.error(
                "max since for %s is %r; ensure %s is a timestamp column",
                self.name,
                value,
                self._since_column,
            )
            raise InternalError(
                f"since column {self._since_column} of dataset {self.name} is not a timestamp"
            )
        self.max_since = value
        self._token = encode_token(value)

    # iteration -------------------------------------------------------------
    def next(self) -> Optional[Entity]:
        """Return the next entity, or ``None`` once the result set is exhausted."""
        if self.state is IteratorState.INITIALIZING:
            raise InternalError("iterator used before start()")
        if self.state in (IteratorState.EXHAUSTED, IteratorState.CLOSED):
            return None
        if self.state is IteratorState.ERRORED:
            raise InternalError(f"changes iterator for {self.name} already failed")

        try:
            row = self._cursor.fetchone()
        except Error as exc:
            self._fail()
            logger.error("failed to read rows for %s: %s", self.name, exc)
            raise InternalError(f"failed to read rows for dataset {self.name}: {exc}") from exc

        if row is None:
            self.state = IteratorState.EXHAUSTED
            return None
        if self._plans is None:
            self._plans = plan_columns(self._cursor.description)

        try:
            if self._entity_column:
                return self._embedded_entity(row)
            return self._mapped_entity(row)
        except InternalError:
            self._fail()
            raise

    def __iter__(self) -> Iterator[Entity]:
        while True:
            entity = self.next()
            if entity is None:
                return
            yield entity

    def _mapped_entity(self, row: Any) -> Entity:
        item = RowItem()
        try:
            for plan, value in zip(self._plans, row):
                item.set_value(plan.name, plan.decode(value))
        except (TypeError, ValueError) as exc:
            logger.error("failed to decode row for %s: %s", self.name, exc)
            raise InternalError(f"failed to decode row: {exc}") from exc

        entity = Entity()
        try:
            self._mapper.map_item_to_entity(item, entity)
        except MappingError as exc:
            logger.error("failed to map row %r: %s", item, exc)
            raise InternalError(f"failed to map row: {exc}") from exc
        return entity

    def _embedded_entity(self, row: Any) -> Entity:
        raw: Any = None
        for plan, value in zip(self._plans, row):
            if plan.name == self._entity_column:
                raw = value
                if plan.kind is not ColumnKind.JSON and isinstance(value, (bytes, memoryview)):
                    raw = bytes(value).decode("utf-8")
                break

        if isinstance(raw, str):
            document = raw
        else:
            try:
                document = json.dumps(raw)
            except (TypeError, ValueError) as exc:
                logger.error("failed to marshal entity column for %s: %s", self.name, exc)
                raise InternalError(f"failed to marshal entity column: {exc}") from exc

        wrapped = f'[{{"id": "{CONTEXT_ID}", "namespaces": {{}}}}, {document}]'
        entities: List[Entity] = []
        parser = EntityParser(NamespaceContext(), expand_uris=True)
        try:
            parser.parse(wrapped, entities.append)
        except ValueError as exc:
            logger.error("failed to parse entity for %s: %s", self.name, exc)
            raise InternalError(f"failed to parse entity: {exc}") from exc
        if not entities:
            logger.error("failed to parse entity for %s: no entity", self.name)
            raise InternalError("no entity in entity column")
        return entities[0]

    # continuation ----------------------------------------------------------
    def token(self) -> Continuation:
        return Continuation(token=self._token)

    def context(self) -> NamespaceContext:
        return NamespaceContext()

    # lifecycle -------------------------------------------------------------
    def close(self) -> None:
        if self.state is IteratorState.CLOSED:
            return
        self.state = IteratorState.CLOSED
        self._teardown()

    def _fail(self) -> None:
        self.state = IteratorState.ERRORED
        self._teardown()

    def _teardown(self) -> None:
        conn, self._conn = self._conn, None
        cursor, self._cursor = self._cursor, None
        if conn is None:
            return
        discard = False
        try:
            if cursor is not None and not cursor.closed:
                cursor.close()
            conn.rollback()
        except Error as exc:
            discard = True
            logger.warning("failed to release changes cursor for %s: %s", self.name, exc)
        finally:
            if self._release is not None:
                self._release(conn, discard=discard)

    def __enter__(self) -> "ChangeIterator":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


__all__ = ["ChangeIterator", "IteratorState"]
