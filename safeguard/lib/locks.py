"""
Per-key locking and optimistic retry helpers.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Hashable, Iterator, Tuple, TypeVar

from safeguard.lib.errors import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedLock:
    """
    One lock per key, so independent users/content/IPs never block each other.
    Locks are dropped once no thread holds or waits on them.
    """

    def __init__(self, name: str = "keyed"):
        self.name = name
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.RLock, int]] = {}

    def _acquire_entry(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.RLock()
            self._locks[key] = (lock, users + 1)
            return lock

    def _release_entry(self, key: Hashable) -> None:
        with self._guard:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._acquire_entry(key)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._release_entry(key)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


def retry_on_conflict(
    operation: Callable[[], T],
    attempts: int = 5,
    backoff_seconds: float = 0.01,
) -> T:
    """
    Re-run a read-modify-write operation when the conditional write loses a race.
    The operation must re-read its row on every call.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyConflictError as e:
            if attempt == attempts:
                logger.error(f"Giving up after {attempts} conflicting writes: {e}")
                raise
            logger.debug(f"Write conflict (attempt {attempt}/{attempts}): {e}")
            time.sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")
