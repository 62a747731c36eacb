"""
Connection Pool
===============
Bounded pool of warehouse connections with idle eviction.

Connections are checked out exclusively: two callers never share one.
Idle connections past the timeout are closed by a background reaper and
replaced lazily on the next acquire.
"""

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import count
from typing import Any

from sqp_sync.config import Settings
from sqp_sync.errors import ConfigurationError, PoolClosedError, PoolTimeoutError
from sqp_sync.logs import get_logger
from sqp_sync.warehouse.client import create_warehouse_client


@dataclass
class PooledConnection:
    """Bookkeeping for one connection."""

    id: int
    connection: Any
    in_use: bool = False
    last_used: float = field(default_factory=time.monotonic)


class ConnectionPool:
    """
    Thread-safe bounded connection pool.

    Args:
        factory: Zero-arg callable returning a new connection
        max_connections: Hard cap on open connections
        idle_timeout_ms: Close connections idle longer than this
        acquire_timeout_ms: Give up waiting for a free connection after this
        min_connections: Connections opened eagerly at construction
        reap_interval_s: Seconds between idle sweeps (None disables the reaper)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        max_connections: int = 5,
        idle_timeout_ms: int = 60000,
        acquire_timeout_ms: int = 30000,
        min_connections: int = 1,
        reap_interval_s: float | None = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_connections < 1:
            raise ConfigurationError("max_connections must be at least 1")

        self._factory = factory
        self.max_connections = max_connections
        self.idle_timeout = idle_timeout_ms / 1000
        self.acquire_timeout = acquire_timeout_ms / 1000
        self._clock = clock
        self._cond = threading.Condition()
        self._connections: dict[int, PooledConnection] = {}
        self._ids = count(1)
        self._creating = 0
        self._closed = False
        self._stop = threading.Event()
        self._reaper: threading.Thread | None = None

        # Open eagerly so bad credentials fail here, not on first query
        for _ in range(min(min_connections, max_connections)):
            try:
                connection = factory()
            except ConfigurationError:
                raise
            except Exception as e:
                raise ConfigurationError(f"Unable to open warehouse connection: {e}") from e
            self._register(connection, in_use=False)

        if reap_interval_s:
            self._reaper = threading.Thread(
                target=self._reap_loop, args=(reap_interval_s,), name="pool-reaper", daemon=True
            )
            self._reaper.start()

    # ---------------------------------------------------------------- internals

    def _register(self, connection: Any, in_use: bool) -> PooledConnection:
        pooled = PooledConnection(
            id=next(self._ids), connection=connection, in_use=in_use, last_used=self._clock()
        )
        self._connections[pooled.id] = pooled
        return pooled

    def _close_connection(self, connection: Any) -> None:
        close = getattr(connection, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception as e:
            get_logger(__name__).warning(f"⚠️  Error closing warehouse connection: {e}")

    def _reap_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.evict_idle()

    # ------------------------------------------------------------------ public

    def acquire(self) -> Any:
        """
        Check out a connection, waiting up to the acquire timeout.

        Raises:
            PoolClosedError: pool has been drained
            PoolTimeoutError: no connection freed up in time
        """
        deadline = time.monotonic() + self.acquire_timeout

        with self._cond:
            while True:
                if self._closed:
                    raise PoolClosedError("Connection pool is closed")

                for pooled in self._connections.values():
                    if not pooled.in_use:
                        pooled.in_use = True
                        pooled.last_used = self._clock()
                        return pooled.connection

                if len(self._connections) + self._creating < self.max_connections:
                    self._creating += 1
                    break

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoolTimeoutError(
                        f"Failed to acquire connection within {self.acquire_timeout:.1f}s"
                    )
                self._cond.wait(remaining)

        # Open outside the lock; the slot is already reserved
        try:
            connection = self._factory()
        except Exception:
            with self._cond:
                self._creating -= 1
                self._cond.notify()
            raise

        with self._cond:
            self._creating -= 1
            if self._closed:
                self._close_connection(connection)
                raise PoolClosedError("Connection pool is closed")
            self._register(connection, in_use=True)
            return connection

    def release(self, connection: Any) -> None:
        """Return a connection to the pool."""
        with self._cond:
            for pooled in self._connections.values():
                if pooled.connection is connection:
                    pooled.in_use = False
                    pooled.last_used = self._clock()
                    self._cond.notify_all()
                    return

        get_logger(__name__).warning("⚠️  Released a connection the pool does not own")

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Check out a connection for the duration of a with-block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def evict_idle(self) -> int:
        """
        Close connections idle longer than the idle timeout.

        Returns:
            Number of connections closed
        """
        now = self._clock()
        with self._cond:
            stale = [
                pooled
                for pooled in self._connections.values()
                if not pooled.in_use and now - pooled.last_used > self.idle_timeout
            ]
            for pooled in stale:
                del self._connections[pooled.id]
            if stale:
                self._cond.notify_all()

        for pooled in stale:
            self._close_connection(pooled.connection)

        return len(stale)

    def drain(self, timeout: float | None = None) -> bool:
        """
        Stop handing out connections, wait for in-flight work, close everything.

        Args:
            timeout: Max seconds to wait for checked-out connections (None = forever)

        Returns:
            True if every connection was returned before closing
        """
        self._stop.set()
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._cond:
            self._closed = True
            clean = True
            while any(p.in_use for p in self._connections.values()) or self._creating:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    clean = False
                    break
                self._cond.wait(remaining)

            to_close = list(self._connections.values())
            self._connections.clear()

        for pooled in to_close:
            self._close_connection(pooled.connection)

        if self._reaper is not None and self._reaper is not threading.current_thread():
            self._reaper.join(timeout=1)

        return clean

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> dict:
        """Current pool occupancy."""
        with self._cond:
            in_use = sum(1 for p in self._connections.values() if p.in_use)
            return {
                "total": len(self._connections),
                "in_use": in_use,
                "idle": len(self._connections) - in_use,
                "max_connections": self.max_connections,
            }


def create_pool(settings: Settings, **kwargs) -> ConnectionPool:
    """Pool of BigQuery clients configured from settings."""
    return ConnectionPool(
        lambda: create_warehouse_client(settings),
        max_connections=settings.pool_max_connections,
        idle_timeout_ms=settings.pool_idle_timeout_ms,
        acquire_timeout_ms=settings.pool_acquire_timeout_ms,
        **kwargs,
    )
