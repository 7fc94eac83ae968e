"""Per-order refund lock.

The ceiling check and the ledger append of one refund must not interleave
with another refund for the same order. The lock is held from the
idempotency lookup until the refund record is persisted.

- InProcessOrderLock: keyed threading locks, for a single worker process
- RedisOrderLock: redis-py distributed lock, for multiple workers
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager

import redis
import structlog
from redis.exceptions import LockError

from orders.config import get_lock_backend, get_lock_timeout_seconds, get_redis_url
from orders.refund.errors import RefundInProgressError

logger = structlog.get_logger(__name__)


class OrderLock(ABC):
    @abstractmethod
    def hold(self, order_id: str) -> Iterator[None]:
        """Context manager serializing refunds of one order.

        Raises:
            RefundInProgressError: the lock was not acquired in time.
        """
        ...


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0  # threads holding or waiting


class InProcessOrderLock(OrderLock):
    """Keyed locks; an order's entry is dropped once no thread holds or waits on it."""

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else get_lock_timeout_seconds()
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    def active_orders(self) -> int:
        """Orders with a thread currently holding or waiting on their lock."""
        return len(self._entries)

    def _check_out(self, key: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.users += 1
            return entry

    def _check_in(self, key: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, order_id: str) -> Iterator[None]:
        key = str(order_id)
        entry = self._check_out(key)
        try:
            if not entry.lock.acquire(timeout=self.timeout_seconds):
                raise RefundInProgressError(order_id)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._check_in(key, entry)


class RedisOrderLock(OrderLock):
    key_prefix = "orders:refund-lock:"

    def __init__(self, client, timeout_seconds: float | None = None) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else get_lock_timeout_seconds()

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float | None = None) -> "RedisOrderLock":
        return cls(redis.Redis.from_url(url), timeout_seconds=timeout_seconds)

    @contextmanager
    def hold(self, order_id: str) -> Iterator[None]:
        lock = self.client.lock(
            f"{self.key_prefix}{order_id}",
            timeout=self.timeout_seconds,
            blocking_timeout=self.timeout_seconds,
        )
        if not lock.acquire():
            raise RefundInProgressError(order_id)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired while held; another worker may already own it.
                logger.warning("Refund lock expired before release", order_id=str(order_id))


_current_lock: OrderLock | None = None


def get_order_lock() -> OrderLock:
    """Return the active lock, built from ORDER_LOCK_BACKEND on first use."""
    global _current_lock
    if _current_lock is None:
        if get_lock_backend() == "redis":
            _current_lock = RedisOrderLock.from_url(get_redis_url())
        else:
            _current_lock = InProcessOrderLock()
    return _current_lock


def set_order_lock(lock: OrderLock) -> None:
    global _current_lock
    _current_lock = lock


def reset_order_lock() -> None:
    global _current_lock
    _current_lock = None
