import psycopg2
import pytest

import sql_datalayer.db as db
from sql_datalayer.config import NativeSystemConfig
from sql_datalayer.errors import InternalError


class _FakeConn:
    def __init__(self, closed: int = 0):
        self.closed = closed


class _FakeThreadedPool:
    instances = []

    def __init__(self, minconn, maxconn, **kwargs):
        self.minconn = minconn
        self.maxconn = maxconn
        self.kwargs = kwargs
        self.closed = False
        self.returned = []
        self.exhausted = False
        _FakeThreadedPool.instances.append(self)

    def getconn(self):
        if self.exhausted:
            raise psycopg2.pool.PoolError("connection pool exhausted")
        return _FakeConn()

    def putconn(self, conn, close=False):
        self.returned.append((conn, close))

    def closeall(self):
        self.closed = True


@pytest.fixture
def fake_pool(monkeypatch):
    _FakeThreadedPool.instances = []
    monkeypatch.setattr(db, "ThreadedConnectionPool", _FakeThreadedPool)
    return _FakeThreadedPool


@pytest.mark.unit
def test_session_options_pin_schema_and_utc():
    assert db.session_options("inventory") == "-c search_path=inventory,public -c TimeZone=UTC"


@pytest.mark.unit
def test_pool_is_built_from_native_config(fake_pool):
    native = NativeSystemConfig(host="db", port=5433, database="inv", user="u", password="p", schema="s")

    pool = db.ConnectionPool(native, min_size=2, max_size=3)

    raw = fake_pool.instances[0]
    assert (raw.minconn, raw.maxconn) == (2, 3)
    assert raw.kwargs["dbname"] == "inv"
    assert raw.kwargs["options"] == "-c search_path=s,public -c TimeZone=UTC"
    assert raw.kwargs["connection_factory"] is db.Connection
    assert pool.closed is False


@pytest.mark.unit
def test_release_closes_broken_connections(fake_pool):
    pool = db.ConnectionPool(NativeSystemConfig())
    healthy = pool.acquire()
    broken = _FakeConn(closed=2)

    pool.release(healthy)
    pool.release(broken)
    pool.release(healthy, discard=True)

    assert fake_pool.instances[0].returned == [(healthy, False), (broken, True), (healthy, True)]


@pytest.mark.unit
def test_exhausted_pool_raises_internal_error(fake_pool):
    pool = db.ConnectionPool(NativeSystemConfig())
    fake_pool.instances[0].exhausted = True

    with pytest.raises(InternalError):
        pool.acquire()


@pytest.mark.unit
def test_close_is_idempotent(fake_pool):
    pool = db.ConnectionPool(NativeSystemConfig())

    pool.close()
    pool.close()

    assert pool.closed is True


@pytest.mark.unit
def test_retire_waits_for_connections_in_use(fake_pool):
    pool = db.ConnectionPool(NativeSystemConfig())
    first = pool.acquire()
    second = pool.acquire()

    pool.retire()
    assert pool.closed is False
    assert pool.in_use == 2

    pool.release(first)
    assert pool.closed is False
    pool.release(second, discard=True)

    assert pool.in_use == 0
    assert pool.closed is True
    assert fake_pool.instances[0].returned == [(first, False), (second, True)]


@pytest.mark.unit
def test_retire_idle_pool_closes_immediately(fake_pool):
    pool = db.ConnectionPool(NativeSystemConfig())
    pool.release(pool.acquire())

    pool.retire()

    assert pool.closed is True


@pytest.mark.unit
def test_connect_failure_is_wrapped(monkeypatch):
    def _refuse(*_args, **_kwargs):
        raise psycopg2.OperationalError("connection refused")

    monkeypatch.setattr(db, "ThreadedConnectionPool", _refuse)

    with pytest.raises(InternalError):
        db.ConnectionPool(NativeSystemConfig())
