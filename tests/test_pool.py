"""
Tests for the warehouse connection pool.
"""

import threading
import time

import pytest

from sqp_sync.errors import ConfigurationError, PoolClosedError, PoolTimeoutError
from sqp_sync.warehouse.pool import ConnectionPool


class Conn:
    def __init__(self, n):
        self.n = n
        self.closed = False

    def close(self):
        self.closed = True


class Factory:
    def __init__(self):
        self.created = []

    def __call__(self):
        conn = Conn(len(self.created) + 1)
        self.created.append(conn)
        return conn


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_pool(factory=None, clock=None, **kwargs):
    kwargs.setdefault("reap_interval_s", None)
    kwargs.setdefault("acquire_timeout_ms", 100)
    return ConnectionPool(factory or Factory(), clock=clock or Clock(), **kwargs)


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    def test_opens_min_connections_eagerly(self):
        factory = Factory()
        pool = make_pool(factory, min_connections=2)
        assert len(factory.created) == 2
        assert pool.stats()["idle"] == 2

    def test_factory_failure_is_configuration_error(self):
        def broken():
            raise RuntimeError("invalid_grant")

        with pytest.raises(ConfigurationError):
            make_pool(broken)

    def test_rejects_zero_capacity(self):
        with pytest.raises(ConfigurationError):
            make_pool(max_connections=0)


# =============================================================================
# Acquire / release
# =============================================================================


class TestAcquireRelease:
    def test_reuses_released_connection(self):
        factory = Factory()
        pool = make_pool(factory)
        first = pool.acquire()
        pool.release(first)
        assert pool.acquire() is first
        assert len(factory.created) == 1

    def test_connections_never_shared(self):
        pool = make_pool(max_connections=3)
        held = [pool.acquire() for _ in range(3)]
        assert len({id(c) for c in held}) == 3

    def test_timeout_when_exhausted(self):
        pool = make_pool(max_connections=1, acquire_timeout_ms=50)
        pool.acquire()
        with pytest.raises(PoolTimeoutError):
            pool.acquire()

    def test_waiter_gets_released_connection(self):
        pool = make_pool(max_connections=1, acquire_timeout_ms=2000)
        conn = pool.acquire()
        got = []

        waiter = threading.Thread(target=lambda: got.append(pool.acquire()))
        waiter.start()
        time.sleep(0.05)
        pool.release(conn)
        waiter.join(timeout=2)

        assert got == [conn]

    def test_context_manager_releases(self):
        pool = make_pool(max_connections=1)
        with pool.connection() as conn:
            assert pool.stats()["in_use"] == 1
        assert pool.stats()["in_use"] == 0
        assert pool.acquire() is conn


# =============================================================================
# Idle eviction
# =============================================================================


class TestEviction:
    def test_evicts_idle_past_timeout(self):
        clock = Clock()
        factory = Factory()
        pool = make_pool(factory, clock, idle_timeout_ms=1000)

        clock.now = 2.0
        assert pool.evict_idle() == 1
        assert factory.created[0].closed
        assert pool.stats()["total"] == 0

    def test_keeps_in_use_connections(self):
        clock = Clock()
        pool = make_pool(clock=clock, idle_timeout_ms=1000)
        conn = pool.acquire()

        clock.now = 10.0
        assert pool.evict_idle() == 0
        assert not conn.closed

    def test_replaced_lazily(self):
        clock = Clock()
        factory = Factory()
        pool = make_pool(factory, clock, idle_timeout_ms=1000)
        clock.now = 2.0
        pool.evict_idle()

        conn = pool.acquire()
        assert conn is factory.created[1]


# =============================================================================
# Drain
# =============================================================================


class TestDrain:
    def test_closes_everything(self):
        factory = Factory()
        pool = make_pool(factory, min_connections=2)
        assert pool.drain() is True
        assert all(c.closed for c in factory.created)
        assert pool.closed

    def test_acquire_after_drain(self):
        pool = make_pool()
        pool.drain()
        with pytest.raises(PoolClosedError):
            pool.acquire()

    def test_waits_for_checked_out(self):
        pool = make_pool()
        conn = pool.acquire()

        releaser = threading.Timer(0.05, pool.release, args=(conn,))
        releaser.start()
        assert pool.drain(timeout=2) is True
        assert conn.closed

    def test_timeout_reports_unclean(self):
        pool = make_pool()
        pool.acquire()
        assert pool.drain(timeout=0.05) is False

    def test_stops_reaper(self):
        pool = make_pool(reap_interval_s=0.01)
        pool.drain()
        assert not pool._reaper.is_alive()
