"""Database utilities and psycopg2 helpers for the SQL data layer."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import psycopg2
from psycopg2 import Error, OperationalError
from psycopg2.extensions import ISOLATION_LEVEL_REPEATABLE_READ
from psycopg2.pool import PoolError, ThreadedConnectionPool

from ..errors import InternalError

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from ..config import NativeSystemConfig

logger = logging.getLogger(__name__)


class Connection(psycopg2.extensions.connection):
    """psycopg2 connection subclass with the session helpers used by the layer."""

    def prepare_read(self) -> None:
        """Switch to a read-only snapshot transaction for change queries."""
        self.set_session(
            isolation_level=ISOLATION_LEVEL_REPEATABLE_READ,
            readonly=True,
            autocommit=False,
        )

    def prepare_write(self) -> None:
        """Switch to an explicit read-write transaction for batch writes."""
        self.set_session(isolation_level="DEFAULT", readonly=False, autocommit=False)


def session_options(schema: str) -> str:
    return f"-c search_path={schema},public -c TimeZone=UTC"


def connect(*args, **kwargs) -> Connection:
    """Create a Connection instance using psycopg2."""

    kwargs.setdefault("connection_factory", Connection)
    return psycopg2.connect(*args, **kwargs)


class ConnectionPool:
    """Thread-safe pool shared by every dataset of a layer.

    Each iterator or writer holds one connection for its whole lifetime and
    hands it back with :meth:`release`.
    """

    def __init__(
        self,
        native: "NativeSystemConfig",
        *,
        min_size: int = 1,
        max_size: int = 10,
    ) -> None:
        try:
            self._pool = ThreadedConnectionPool(
                min_size,
                max_size,
                host=native.host,
                port=native.port,
                dbname=native.database,
                user=native.user,
                password=native.password,
                options=session_options(native.schema),
                connection_factory=Connection,
            )
        except Error as exc:
            raise InternalError(
                f"could not connect to {native.host}:{native.port}/{native.database}: {exc}"
            ) from exc
        self._lock = threading.Lock()
        self._in_use = 0
        self._retiring = False
        logger.info(
            "connection pool ready for %s:%s/%s (max %d)",
            native.host,
            native.port,
            native.database,
            max_size,
        )

    def acquire(self) -> Connection:
        try:
            conn = self._pool.getconn()
        except (Error, PoolError) as exc:
            raise InternalError(f"could not acquire database connection: {exc}") from exc
        with self._lock:
            self._in_use += 1
        return conn

    def release(self, conn: Connection, *, discard: bool = False) -> None:
        try:
            self._pool.putconn(conn, close=discard or bool(conn.closed))
        except PoolError:
            logger.warning("connection returned to pool was not taken from it")
        with self._lock:
            self._in_use = max(self._in_use - 1, 0)
            drained = self._retiring and self._in_use == 0
        if drained:
            self.close()

    def retire(self) -> None:
        """Close the pool once every connection taken from it is released."""
        with self._lock:
            self._retiring = True
            busy = self._in_use
        if busy:
            logger.info("retiring connection pool with %d connection(s) in use", busy)
        else:
            self.close()

    def close(self) -> None:
        if not self._pool.closed:
            self._pool.closeall()

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def closed(self) -> bool:
        return bool(self._pool.closed)


__all__ = [
    "Connection",
    "ConnectionPool",
    "Error",
    "OperationalError",
    "connect",
    "session_options",
]
