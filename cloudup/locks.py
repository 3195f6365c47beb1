"""Keyed locks for provider operations that are not safe under concurrent callers."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Registry of mutexes, one per key (e.g. one per project IAM policy).

    Renders run in worker threads, so the locks are thread locks. Hold a lock
    only around the read-modify-write it protects.

    Example:
        with target.locks.hold(f"project-iam:{project}"):
            policy = client.get_iam_policy(project)
            ...
            client.set_iam_policy(project, policy)
    """

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def get(self, key: str) -> threading.Lock:
        """Return the lock for key, creating it on first use."""
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Acquire the lock for key for the duration of the block."""
        lock = self.get(key)
        with lock:
            logger.debug(f"Acquired lock {key}")
            yield
        logger.debug(f"Released lock {key}")

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
