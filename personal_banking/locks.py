"""
Per-owner mutual exclusion for balance mutations.
"""

import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from .errors import StoreUnavailableError


class OwnerLockRegistry:
    """
    Hands out one lock per owner id. Entries are reference counted and
    dropped once no caller holds or waits on them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # owner_id -> [lock, users]

    @contextmanager
    def hold(self, owner_id: str, timeout: Optional[float] = None):
        """
        Hold the owner's lock for the duration of the block.

        Raises:
            StoreUnavailableError: If the lock is not acquired within timeout
        """
        with self._guard:
            entry = self._locks.setdefault(owner_id, [threading.Lock(), 0])
            entry[1] += 1

        acquired = entry[0].acquire(timeout=-1 if timeout is None else timeout)
        try:
            if not acquired:
                raise StoreUnavailableError(
                    f"Timed out waiting for another transaction on owner {owner_id}",
                    owner_id=owner_id
                )
            yield
        finally:
            if acquired:
                entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[owner_id]

    def active_owners(self) -> int:
        """Number of owners with a held or awaited lock"""
        with self._guard:
            return len(self._locks)
