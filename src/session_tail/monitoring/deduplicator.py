"""Bounded de-duplication of emitted records."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100_000


class Deduplicator:
    """Thread-safe, capacity-bounded set of seen record keys.

    Keys are evicted in insertion order once the capacity is exceeded, so
    memory stays bounded. A key evicted long ago could pass again if its
    record were replayed; that trade-off is accepted.

    Example:
        dedup = Deduplicator(capacity=2)
        dedup.try_mark_seen("a")  # True
        dedup.try_mark_seen("a")  # False
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()
        self._evicted = 0

    def try_mark_seen(self, key: str) -> bool:
        """Record a key as seen.

        Args:
            key: Record identity.

        Returns:
            True if the key was new (caller may emit), False if it was
            already present (caller must not emit).
        """
        with self._lock:
            if key in self._seen:
                return False

            self._seen[key] = None
            while len(self._seen) > self.capacity:
                self._seen.popitem(last=False)
                self._evicted += 1
            return True

    @property
    def evicted_count(self) -> int:
        """Number of keys dropped to respect the capacity."""
        return self._evicted

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
            self._evicted = 0

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
