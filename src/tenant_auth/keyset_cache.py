"""Process-wide cache of key sets, keyed by identity domain.

KeySetCache memoizes one KeySet per domain so that verification does not
cost a network round-trip per request. It is built once at startup and the
same instance is handed to every request path.

Concurrency:
    - Reads of an already-cached domain take only the short registry lock.
    - Each domain has its own fill lock, so a slow fetch for one domain
      never blocks verification against another.
    - Concurrent misses for the same domain are collapsed into one fetch:
      the first caller fetches, the others wait on the domain lock and then
      find the fresh entry.
    - An entry is replaced by a single dict assignment, so an abandoned
      request can never leave a half-written KeySet behind.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from .errors import UnknownKey
from .key_providers import normalize_domain

if TYPE_CHECKING:
    from .models import KeySet
    from .protocols import KeySetFetcher
    from .refresh_gate import RefreshGate

logger = logging.getLogger(__name__)


class KeySetCache:
    """Shared, internally synchronized KeySet cache.

    Attributes:
        _fetcher: Source of fresh key sets.
        _ttl: Optional lifetime of an entry in seconds; None keeps entries
            until they are invalidated or force-refreshed.
        _gate: Optional RefreshGate throttling forced refetches.
        _entries: domain -> KeySet.
        _fill_locks: domain -> lock serializing fetches for that domain.
    """

    def __init__(
        self,
        fetcher: KeySetFetcher,
        *,
        ttl_seconds: float | None = None,
        refresh_gate: RefreshGate | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._gate = refresh_gate

        self._lock = threading.Lock()
        self._entries: dict[str, KeySet] = {}
        self._fill_locks: dict[str, threading.Lock] = {}

    def _fill_lock(self, domain: str) -> threading.Lock:
        with self._lock:
            lock = self._fill_locks.get(domain)
            if lock is None:
                lock = self._fill_locks[domain] = threading.Lock()
            return lock

    def _fresh(self, domain: str) -> KeySet | None:
        with self._lock:
            key_set = self._entries.get(domain)
        if key_set is None:
            return None
        if self._ttl is not None and time.time() >= key_set.fetched_at + self._ttl:
            return None
        return key_set

    def _store(self, domain: str, key_set: KeySet) -> None:
        with self._lock:
            self._entries[domain] = key_set

    def peek(self, domain: str) -> KeySet | None:
        """Return the cached KeySet without fetching, or None."""
        return self._fresh(normalize_domain(domain))

    def get_or_fetch(self, domain: str) -> KeySet:
        """Return the cached KeySet for ``domain``, fetching it on a miss.

        Raises:
            FetchFailed: The fetch on a miss failed. Nothing is cached.
        """
        domain = normalize_domain(domain)

        key_set = self._fresh(domain)
        if key_set is not None:
            logger.debug("Key set cache hit for %s", domain)
            return key_set

        with self._fill_lock(domain):
            # Another caller may have filled it while we waited.
            key_set = self._fresh(domain)
            if key_set is not None:
                return key_set

            key_set = self._fetcher.fetch(domain)
            self._store(domain, key_set)
            return key_set

    def refresh(self, domain: str, *, stale: KeySet | None = None) -> KeySet:
        """Bypass the cache and refetch the KeySet for ``domain``.

        Args:
            domain: Identity domain.
            stale: The KeySet the caller found lacking. If the cache already
                holds a different (newer) KeySet by the time the domain lock
                is acquired, that one is returned without another fetch, so a
                burst of rotation failures costs one fetch.

        Raises:
            FetchFailed: The refetch failed. The previous entry is kept.
            UnknownKey: A configured RefreshGate denied the refetch.
        """
        domain = normalize_domain(domain)

        with self._fill_lock(domain):
            with self._lock:
                current = self._entries.get(domain)
            if stale is not None and current is not None and current is not stale:
                return current

            if self._gate is not None and not self._gate.allow(domain):
                raise UnknownKey(f"Key set refresh for {domain} throttled")

            key_set = self._fetcher.fetch(domain)
            self._store(domain, key_set)
            return key_set

    def invalidate(self, domain: str) -> None:
        domain = normalize_domain(domain)
        with self._lock:
            self._entries.pop(domain, None)
