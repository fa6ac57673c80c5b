"""
Per-workflow mutual exclusion.

Every mutating engine operation runs inside ``registry.hold(workflow_id)``,
so two threads of one process never interleave read-modify-write on the same
workflow.  Cross-process writers are caught by the ``version`` column on
``Workflow`` instead.
"""

import logging
import threading
from contextlib import contextmanager

from app.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)


class WorkflowLockRegistry:
    """Hands out one re-entrant lock per key (workflow id, or project/vendor pair).

    Each entry counts the threads holding or waiting on it and is dropped
    when that count returns to zero, so the registry only ever contains keys
    that are in use right now.
    """

    def __init__(self, timeout: float | None = 10.0):
        self.timeout = timeout
        self._locks: dict[str, list] = {}   # key -> [RLock, holders + waiters]
        self._guard = threading.Lock()

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str):
        """Acquire the lock for *key* for the duration of the block.

        Raises:
            ConcurrencyConflictError: the lock could not be acquired within
                ``timeout`` seconds.
        """
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(timeout=self.timeout if self.timeout is not None else -1)
            if not acquired:
                logger.warning("Timed out waiting for workflow lock %s", key)
                raise ConcurrencyConflictError(key)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self):
        with self._guard:
            return len(self._locks)
