"""Data layer service: datasets over a shared PostgreSQL connection pool."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from psycopg2 import Error

from .changes import ChangeIterator
from .config import DatasetDefinition, LayerConfig, NativeSystemConfig, Settings
from .db import ConnectionPool
from .errors import ConfigurationError, DatasetNotFound, InternalError, NotSupported
from .mapping import Mapper, MappingConfig
from .writer import BatchWriter, WriterMetrics

logger = logging.getLogger(__name__)

PoolFactory = Callable[..., Any]


@dataclass(frozen=True)
class DatasetDescription:
    name: str


def _lowercase_outgoing(definition: DatasetDefinition) -> DatasetDefinition:
    outgoing = definition.outgoing_mapping_config
    if outgoing is None:
        return definition
    mappings = [replace(pm, property=pm.property.lower()) for pm in outgoing.property_mappings]
    return replace(
        definition,
        outgoing_mapping_config=MappingConfig(
            base_uri=outgoing.base_uri,
            property_mappings=mappings,
            map_all=outgoing.map_all,
            map_named=outgoing.map_named,
        ),
    )


class Dataset:
    """One configured table exposed as an entity stream and an upsert sink."""

    def __init__(self, definition: DatasetDefinition, pool: Any, *, itersize: int = 2000) -> None:
        self.definition = definition
        self._pool = pool
        self._itersize = itersize
        self.metrics = WriterMetrics()

    def rebind(self, definition: DatasetDefinition, pool: Any) -> None:
        self.definition = definition
        self._pool = pool

    @property
    def name(self) -> str:
        return self.definition.name

    def metadata(self) -> Dict[str, Any]:
        return dict(self.definition.source_config)

    def _mapper(self) -> Mapper:
        return Mapper(
            self.definition.incoming_mapping_config,
            self.definition.outgoing_mapping_config,
        )

    def changes(self, since: str = "", limit: int = 0, latest_only: bool = False) -> ChangeIterator:
        """Open a change iterator for rows changed after ``since``.

        The returned token always points at the snapshot bound, so when
        ``limit`` cuts the page short the rows beyond it are skipped by the
        next read. Use ``limit=0`` to page without losing updates.
        """
        if latest_only:
            raise NotSupported("latest only is not supported")

        conn = self._pool.acquire()
        try:
            conn.prepare_read()
        except Error as exc:
            self._pool.release(conn, discard=True)
            raise InternalError(f"failed to start read for dataset {self.name}: {exc}") from exc

        iterator = ChangeIterator(
            self.definition,
            self._mapper(),
            conn,
            since=since,
            limit=limit,
            itersize=self._itersize,
            release=self._pool.release,
        )
        return iterator.start()

    def entities(self, from_token: str = "", limit: int = 0) -> ChangeIterator:
        return self.changes(from_token, limit, False)

    def incremental(self) -> BatchWriter:
        """Open a writer; entities written to it replace rows by identity."""
        conn = self._pool.acquire()
        try:
            writer = BatchWriter(
                self.definition,
                self._mapper(),
                conn,
                release=self._pool.release,
                metrics=self.metrics,
            )
        except ConfigurationError:
            self._pool.release(conn)
            raise
        return writer.begin()

    def full_sync(self, *args: Any, **kwargs: Any) -> BatchWriter:
        raise NotSupported("full sync is not supported")


class DataLayer:
    """Owns the connection pool and the configured datasets."""

    def __init__(
        self,
        config: LayerConfig,
        settings: Optional[Settings] = None,
        *,
        pool_factory: PoolFactory = ConnectionPool,
    ) -> None:
        self._settings = settings
        self._pool_factory = pool_factory
        self._pool: Any = None
        self._datasets: Dict[str, Dataset] = {}
        self.config = config
        self.update_configuration(config)

    def _pool_options(self) -> Dict[str, int]:
        if self._settings is None:
            return {}
        return {
            "min_size": self._settings.pool_min,
            "max_size": self._settings.pool_max,
        }

    @property
    def itersize(self) -> int:
        return self._settings.itersize if self._settings is not None else 2000

    def update_configuration(self, config: LayerConfig) -> None:
        """Reconnect and reconcile datasets with ``config``."""
        native: NativeSystemConfig = config.native_system_config
        pool = self._pool_factory(native, **self._pool_options())
        previous, self._pool = self._pool, pool
        if previous is not None:
            # iterators and writers still open keep their connections until closed
            previous.retire()

        wanted = {d.name: _lowercase_outgoing(d) for d in config.dataset_definitions}
        for name in list(self._datasets):
            if name not in wanted:
                logger.info("removing dataset %s", name)
                del self._datasets[name]
        for name, definition in wanted.items():
            existing = self._datasets.get(name)
            if existing is None:
                logger.info("adding dataset %s", name)
                self._datasets[name] = Dataset(definition, pool, itersize=self.itersize)
            else:
                existing.rebind(definition, pool)
        self.config = config

    def dataset(self, name: str) -> Dataset:
        try:
            return self._datasets[name]
        except KeyError:
            raise DatasetNotFound(name) from None

    def dataset_descriptions(self) -> List[DatasetDescription]:
        return [DatasetDescription(name=name) for name in sorted(self._datasets)]

    def stop(self) -> None:
        if self._pool is not None:
            self._pool.close()
            logger.info("data layer stopped")


__all__ = ["DataLayer", "Dataset", "DatasetDescription"]
