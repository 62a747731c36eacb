"""
Sync Lock
=========
Single-flight guard for sync jobs.

The in-memory flag rejects a second trigger inside this process without a
round trip. When enabled, the try_sync_lock / release_sync_lock RPCs extend
the guard across processes.

Each RPC is a separate PostgREST request and may run on a different pooled
connection, so the functions must not wrap the session-scoped
pg_try_advisory_lock / pg_advisory_unlock pair: the unlock would miss and
the lock would leak. Back them with a lease row instead, e.g.

    try_sync_lock(lock_key): INSERT INTO sqp.sync_lease (lock_key, expires_at)
        VALUES (lock_key, now() + interval '2 hours')
        ON CONFLICT (lock_key) DO UPDATE SET expires_at = EXCLUDED.expires_at
        WHERE sqp.sync_lease.expires_at < now()
        RETURNING true
    release_sync_lock(lock_key): DELETE FROM sqp.sync_lease WHERE lock_key = lock_key

The expiry frees a lease whose holder died without releasing it.
"""

import threading

from sqp_sync.db import OperationalStore
from sqp_sync.errors import StoreError
from sqp_sync.logs import get_logger

SYNC_LOCK_KEY = 727001


class SyncLock:
    def __init__(
        self,
        store: OperationalStore | None = None,
        use_advisory_lock: bool = False,
        lock_key: int = SYNC_LOCK_KEY,
    ):
        self.store = store
        self.use_advisory_lock = use_advisory_lock and store is not None
        self.lock_key = lock_key
        self._flag = threading.Lock()

    @property
    def locked(self) -> bool:
        return self._flag.locked()

    def acquire(self) -> bool:
        """
        Try to take the lock without waiting.

        Returns:
            False when another sync holds it

        Raises:
            StoreError: the advisory lock RPC failed
        """
        if not self._flag.acquire(blocking=False):
            return False

        if not self.use_advisory_lock:
            return True

        try:
            acquired = bool(self.store.rpc("try_sync_lock", {"lock_key": self.lock_key}))
        except Exception as e:
            self._flag.release()
            raise StoreError(f"Advisory lock request failed: {e}") from e

        if not acquired:
            self._flag.release()
            get_logger(__name__).warning("⏳ Another process holds the sync lock")
        return acquired

    def release(self) -> None:
        if self.use_advisory_lock:
            try:
                self.store.rpc("release_sync_lock", {"lock_key": self.lock_key})
            except Exception as e:
                get_logger(__name__).warning(f"⚠️  Failed to release advisory lock: {e}")
        self._flag.release()
