"""
Per-restaurant serialization for subscription lifecycle mutations.

Two mutations against the same restaurant (an operator grant racing the
sweeper's restore, for example) must not interleave. Within a process this
is a per-key lock; across processes the row lock taken by
TenantsRepository.get_for_update() does the same job in the database.
"""

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator

logger = logging.getLogger(__name__)

# Acquisition timeout, so a wedged holder surfaces as an error instead of
# blocking the caller indefinitely.
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


class TenantLockTimeout(RuntimeError):
    """Raised when the per-restaurant lock cannot be acquired in time."""

    def __init__(self, tenant_id: str, timeout: float):
        self.tenant_id = tenant_id
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout}s waiting for lock on restaurant {tenant_id}"
        )


class _TenantLockRegistry:
    """
    Hands out one Lock per restaurant id.

    Every get_lock() is paired with a release(); an entry is dropped once no
    caller holds or waits on it, so the registry only holds restaurants that
    are being mutated right now.
    """

    def __init__(self):
        self._locks: Dict[str, Lock] = {}
        self._users: Dict[str, int] = {}
        self._registry_lock = Lock()

    def get_lock(self, key: str) -> Lock:
        with self._registry_lock:
            if key not in self._locks:
                self._locks[key] = Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return self._locks[key]

    def release(self, key: str) -> None:
        with self._registry_lock:
            remaining = self._users.get(key, 0) - 1
            if remaining > 0:
                self._users[key] = remaining
            else:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._registry_lock:
            return key in self._locks


_registry = _TenantLockRegistry()


@contextmanager
def tenant_lock(
    tenant_id: str,
    timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
) -> Iterator[None]:
    """Hold the in-process lock for a restaurant for the duration of the block."""
    lock = _registry.get_lock(tenant_id)
    try:
        if not lock.acquire(timeout=timeout):
            logger.error("Restaurant lock acquisition timed out", extra={
                "tenant_id": tenant_id,
                "timeout": timeout,
            })
            raise TenantLockTimeout(tenant_id, timeout)
        try:
            yield
        finally:
            lock.release()
    finally:
        _registry.release(tenant_id)
