"""Buffered delete-then-insert writer for incremental dataset updates."""

from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

from psycopg2 import Error

from ..config import (
    APPEND_MODE,
    DEFAULT_FLUSH_THRESHOLD,
    DEFAULT_SINCE_PRECISION,
    FLUSH_THRESHOLD,
    SINCE_COLUMN,
    SINCE_PRECISION,
    TABLE_NAME,
    DatasetDefinition,
)
from ..errors import ConfigurationError, InternalError
from ..mapping import Mapper, MappingError, RowItem
from ..model import Entity
from .literals import render_literal

logger = logging.getLogger(__name__)

DEFAULT_ID_COLUMN = "id"
FLUSH_HISTORY = 100


class WriterState(enum.Enum):
    BEGUN = "begun"
    FLUSHING = "flushing"
    CLOSED = "closed"
    ABORTED = "aborted"


class WriterMetrics:
    """Counters for flushes and rows written.

    Only the most recent ``history`` flush sizes are kept; the counters are
    cumulative.
    """

    def __init__(self, history: int = FLUSH_HISTORY) -> None:
        self.counters: Dict[str, int] = {}
        self.flush_sizes: Deque[int] = deque(maxlen=history)

    def inc(self, name: str, value: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + value

    def record_flush(self, size: int) -> None:
        self.flush_sizes.append(size)
        self.inc("flushes")


@dataclass
class PendingWrite:
    """Latest version of one identity staged in the current flush window.

    A deleted version has an empty ``statement``: it only takes part in the
    delete and in newest-wins ordering.
    """

    id: Any
    recorded: int
    statement: str


def _flush_threshold(definition: DatasetDefinition) -> int:
    raw = definition.source_config.get(FLUSH_THRESHOLD)
    if raw is None:
        return DEFAULT_FLUSH_THRESHOLD
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise ConfigurationError(
            f"{FLUSH_THRESHOLD} for dataset {definition.name} must be a positive integer, "
            f"got {raw!r}"
        )
    return raw


def _since_precision(definition: DatasetDefinition) -> str:
    precision = definition.get_option(SINCE_PRECISION) or DEFAULT_SINCE_PRECISION
    if not precision.isdigit() or int(precision) > 6:
        raise ConfigurationError(
            f"{SINCE_PRECISION} for dataset {definition.name} must be 0-6, got {precision!r}"
        )
    return str(int(precision))


class BatchWriter:
    """Writes entities into a dataset table in delete-then-insert batches.

    Every identity seen in a flush window is deleted first, then the newest
    non-deleted version of each identity is inserted. Deletes and inserts are
    committed separately per flush; the final commit happens in :meth:`close`.
    """

    def __init__(
        self,
        definition: DatasetDefinition,
        mapper: Mapper,
        conn: Any,
        *,
        release: Optional[Any] = None,
        metrics: Optional[WriterMetrics] = None,
    ) -> None:
        self._definition = definition
        self._mapper = mapper
        self._conn = conn
        self._release = release
        self.metrics = metrics or WriterMetrics()

        self.table = definition.get_option(TABLE_NAME)
        if not self.table:
            raise ConfigurationError(f"dataset {definition.name} has no {TABLE_NAME} to write to")
        self.flush_threshold = _flush_threshold(definition)
        self.append_mode = bool(definition.source_config.get(APPEND_MODE, False))
        self.since_column = definition.get_option(SINCE_COLUMN).lower()
        self.since_precision = _since_precision(definition)
        self.id_column = self._resolve_id_column()

        self._datatypes: Dict[str, str] = {}
        if definition.incoming_mapping_config is not None:
            for pm in definition.incoming_mapping_config.property_mappings:
                self._datatypes[pm.property.lower()] = pm.datatype

        self._delete_ids: List[Any] = []
        self._pending: Dict[Any, PendingWrite] = {}
        self._appended: List[str] = []
        self._batch_size = 0
        self.state = WriterState.BEGUN

    def _resolve_id_column(self) -> str:
        incoming = self._definition.incoming_mapping_config
        if incoming is not None:
            for pm in incoming.property_mappings:
                if pm.is_identity:
                    return pm.property.lower()
        return DEFAULT_ID_COLUMN

    @property
    def name(self) -> str:
        return self._definition.name

    def begin(self) -> "BatchWriter":
        try:
            self._conn.prepare_write()
        except Error as exc:
            self._finish(WriterState.ABORTED, discard=True)
            raise InternalError(f"failed to begin write for dataset {self.name}: {exc}") from exc
        logger.debug("write transaction started for %s", self.name)
        return self

    # writes ----------------------------------------------------------------
    def write(self, entity: Entity) -> None:
        self._ensure_open()
        item = RowItem()
        try:
            self._mapper.map_entity_to_item(entity, item)
        except MappingError as exc:
            raise InternalError(f"failed to map entity {entity.id}: {exc}") from exc
        item.deleted = entity.is_deleted

        identity = item.get_value(self.id_column)
        if identity is None or identity == "":
            raise InternalError(
                f"entity {entity.id} has no value for id column {self.id_column}"
            )

        if self.append_mode:
            if not entity.is_deleted:
                self._appended.append(self._insert_statement(item))
                self._batch_size += 1
        else:
            self._stage(identity, entity, item)

        if self._batch_size >= self.flush_threshold:
            self.flush()

    def _stage(self, identity: Any, entity: Entity, item: RowItem) -> None:
        self._delete_ids.append(identity)
        existing = self._pending.get(identity)
        if existing is not None and entity.recorded < existing.recorded:
            logger.debug(
                "dropping older version of %s (%d < %d)",
                identity,
                entity.recorded,
                existing.recorded,
            )
            return
        # a delete stays staged with no statement so older versions still lose
        statement = "" if entity.is_deleted else self._insert_statement(item)
        self._pending[identity] = PendingWrite(
            id=identity,
            recorded=entity.recorded,
            statement=statement,
        )
        self._batch_size += 1

    def _insert_statement(self, item: RowItem) -> str:
        columns = item.property_names()
        values = [
            render_literal(item.values[index], self._datatypes.get(column, ""))
            for index, column in enumerate(columns)
        ]
        if self.since_column and self.since_column not in item.map:
            columns = columns + [self.since_column]
            values.append(f"CAST(clock_timestamp() AS TIMESTAMP({self.since_precision}))")
        return f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({', '.join(values)})"

    # flushing --------------------------------------------------------------
    def flush(self) -> None:
        """Execute the staged deletes and inserts; no-op when nothing is staged."""
        self._ensure_open()
        if self._batch_size == 0:
            return
        self.state = WriterState.FLUSHING
        size = self._batch_size

        delete_ids = list(dict.fromkeys(self._delete_ids))
        if delete_ids:
            statement = f"DELETE FROM {self.table} WHERE {self.id_column} IN %s"
            logger.debug("%s %r", statement, delete_ids)
            self._execute(statement, (tuple(delete_ids),), "delete")

        inserts = [p.statement for p in self._pending.values() if p.statement] + self._appended
        if inserts:
            block = ";\n".join(inserts)
            logger.debug("insert block for %s:\n%s", self.name, block)
            self._execute(block, None, "insert")

        self._delete_ids = []
        self._pending = {}
        self._appended = []
        self._batch_size = 0
        self.metrics.record_flush(size)
        self.metrics.inc("rows_deleted", len(delete_ids))
        self.metrics.inc("rows_inserted", len(inserts))
        self.state = WriterState.BEGUN

    def _execute(self, statement: str, params: Any, label: str) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute(statement, params)
            self._conn.commit()
        except Error as exc:
            rollback_error: Optional[BaseException] = None
            try:
                self._conn.rollback()
                logger.debug("%s transaction rolled back for %s", label, self.name)
            except Error as rb_exc:
                logger.error("failed to roll back %s for %s: %s", label, self.name, rb_exc)
                rollback_error = rb_exc
            logger.error("%s failed for dataset %s: %s", label, self.name, exc)
            self._finish(WriterState.ABORTED, discard=rollback_error is not None)
            raise InternalError(
                f"{label} failed for dataset {self.name}: {exc}",
                rollback_error=rollback_error,
            ) from exc

    # lifecycle -------------------------------------------------------------
    def close(self) -> None:
        """Flush what is left, commit and hand the connection back."""
        self._ensure_open()
        self.flush()
        try:
            self._conn.commit()
        except Error as exc:
            self._finish(WriterState.ABORTED, discard=True)
            raise InternalError(f"commit failed for dataset {self.name}: {exc}") from exc
        logger.debug("write transaction committed for %s", self.name)
        self._finish(WriterState.CLOSED)

    def abort(self) -> None:
        if self.state in (WriterState.CLOSED, WriterState.ABORTED):
            return
        discard = False
        try:
            self._conn.rollback()
        except Error as exc:
            logger.warning("rollback on abort failed for %s: %s", self.name, exc)
            discard = True
        self._finish(WriterState.ABORTED, discard=discard)

    def _finish(self, state: WriterState, *, discard: bool = False) -> None:
        self.state = state
        conn, self._conn = self._conn, None
        if conn is not None and self._release is not None:
            self._release(conn, discard=discard)

    def _ensure_open(self) -> None:
        if self.state in (WriterState.CLOSED, WriterState.ABORTED):
            raise InternalError(f"writer for dataset {self.name} is {self.state.value}")

    def __enter__(self) -> "BatchWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.close()
        else:
            self.abort()
        return False


__all__ = ["BatchWriter", "PendingWrite", "WriterMetrics", "WriterState"]
