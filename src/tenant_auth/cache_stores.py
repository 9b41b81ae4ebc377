"""Bounded, thread-safe cache of resolved identities.

IdentityCache maps an external identity (the token's ``sub``) to the
UserRecord provisioned for it, so that a verified request does not cost a
persistent-store lookup every time.

Storage Behavior:
    - Capacity-bounded; the least recently used entry is evicted first
    - A ``get`` counts as a use and refreshes the entry's recency
    - Entries are whole UserRecords, written only after the store write
      that produced them succeeded (cache-after-write)

Security Note:
    Entries never expire on their own. A user record is immutable apart
    from name/email, and neither feeds an authorization decision.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Final

from cachetools import LRUCache

if TYPE_CHECKING:
    from .models import UserRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY: Final[int] = 1024


class IdentityCache:
    """LRU cache of external id -> UserRecord.

    ``cachetools.LRUCache`` is not thread-safe on its own: even a read
    reorders entries. Every access therefore goes through one lock, held
    only for the in-memory dict operation (never across I/O).

    Example:
        ```python
        cache = IdentityCache(capacity=1000)
        cache.put(record)
        cache.get(record.external_id)  # UserRecord or None
        ```

    Attributes:
        _lru: Underlying cachetools LRUCache.
        _lock: Guards every access to ``_lru``.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._lru: LRUCache[str, UserRecord] = LRUCache(maxsize=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return int(self._lru.maxsize)

    def get(self, external_id: str) -> UserRecord | None:
        with self._lock:
            return self._lru.get(external_id)

    def put(self, record: UserRecord) -> None:
        """Insert ``record`` under its external id, evicting the LRU entry if full."""
        with self._lock:
            self._lru[record.external_id] = record

    def discard(self, external_id: str) -> None:
        with self._lock:
            self._lru.pop(external_id, None)

    def __contains__(self, external_id: object) -> bool:
        with self._lock:
            return external_id in self._lru

    def __len__(self) -> int:
        with self._lock:
            return len(self._lru)
