"""
Per-tenant run serialization.

At most one sync may be in flight per tenant: overlapping mark/sweep phases
would corrupt the ``outdated`` bookkeeping. A second trigger for a tenant
that is already syncing is rejected with ``SyncInProgressError`` rather than
queued. Different tenants never contend.

Two backends:
- ``redis``: a Redis lock shared by every worker process (production)
- ``local``: an in-process lock for single-process deployments and tests
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import redis
from redis.connection import ConnectionPool

from catalog_sync.utils.config import get_config
from catalog_sync.utils.exceptions import SyncInProgressError
from catalog_sync.utils.logger import get_logger

logger = get_logger(__name__)


LOCK_PREFIX = "catalog_sync:tenant_lock:"


class TenantLock:
    """Base interface for per-tenant locks."""

    def acquire(self, tenant_id: str) -> bool:
        """Try to take the tenant's lock without blocking."""
        raise NotImplementedError

    def release(self, tenant_id: str) -> None:
        raise NotImplementedError

    @contextmanager
    def hold(self, tenant_id: str) -> Iterator[None]:
        """
        Hold the tenant's lock for the duration of a run.

        Raises:
            SyncInProgressError: If another run holds the lock
        """
        if not self.acquire(tenant_id):
            logger.warning(f"Sync already in progress for tenant {tenant_id}; rejecting trigger")
            raise SyncInProgressError(tenant_id)
        try:
            yield
        finally:
            self.release(tenant_id)


class LocalTenantLock(TenantLock):
    """In-process lock keyed by tenant id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Dict[str, threading.Lock] = {}

    def _lock_for(self, tenant_id: str) -> threading.Lock:
        with self._guard:
            return self._held.setdefault(tenant_id, threading.Lock())

    def acquire(self, tenant_id: str) -> bool:
        return self._lock_for(tenant_id).acquire(blocking=False)

    def release(self, tenant_id: str) -> None:
        lock = self._lock_for(tenant_id)
        if lock.locked():
            lock.release()

    def is_locked(self, tenant_id: str) -> bool:
        return self._lock_for(tenant_id).locked()


class RedisTenantLock(TenantLock):
    """
    Redis-backed lock shared across worker processes.

    Locks expire after ``timeout`` seconds so a crashed worker cannot block
    a tenant forever.
    """

    def __init__(self, redis_url: Optional[str] = None, timeout: int = 1200,
                 client: Optional[redis.Redis] = None):
        """
        Args:
            redis_url: Redis connection URL (default from config)
            timeout: Lock expiry in seconds
            client: Pre-built client, mainly for tests
        """
        self.timeout = timeout
        if client is None:
            url = redis_url or get_config().redis_url
            pool = ConnectionPool.from_url(url, max_connections=20)
            client = redis.Redis(connection_pool=pool)
        self.client = client
        self._locks: Dict[str, "redis.lock.Lock"] = {}

    def acquire(self, tenant_id: str) -> bool:
        lock = self.client.lock(f"{LOCK_PREFIX}{tenant_id}", timeout=self.timeout, blocking=False)
        if not lock.acquire(blocking=False):
            return False
        self._locks[tenant_id] = lock
        return True

    def release(self, tenant_id: str) -> None:
        lock = self._locks.pop(tenant_id, None)
        if lock is None:
            return
        try:
            lock.release()
        except redis.exceptions.LockError as e:
            # Expired while the run was still going
            logger.warning(f"Tenant lock for {tenant_id} was lost before release: {e}")


_tenant_lock: Optional[TenantLock] = None


def get_tenant_lock() -> TenantLock:
    """Get the process-wide tenant lock for the configured backend."""
    global _tenant_lock
    if _tenant_lock is None:
        sync_config = get_config().sync
        if sync_config.lock_backend == "local":
            _tenant_lock = LocalTenantLock()
        else:
            _tenant_lock = RedisTenantLock(timeout=sync_config.lock_timeout)
        logger.debug(f"Using {sync_config.lock_backend} tenant lock backend")
    return _tenant_lock


def set_tenant_lock(lock: Optional[TenantLock]) -> None:
    """Replace the process-wide tenant lock (None resets to configured backend)."""
    global _tenant_lock
    _tenant_lock = lock
