"""Persistent user store backends.

Implementations of the UserStore protocol, one per backend:
- InMemoryUserStore: in-process dict (tests, single-instance development)
- RedisUserStore: JSON documents in Redis (shared across instances)

Both treat the external id as a uniqueness constraint and raise
DuplicateUser when a second record for the same external id is inserted,
so concurrent first-sight provisioning can dedupe on conflict. The
backend is chosen once at startup (see ``app.build_user_store``); the
identity resolver only ever sees the protocol.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Final

from redis.exceptions import RedisError

from .errors import DuplicateUser, StoreUnavailable
from .models import UserRecord

logger = logging.getLogger(__name__)

_DEFAULT_PREFIX: Final[str] = "tenant-auth:user:"


class InMemoryUserStore:
    """Lock-protected dict of external id -> UserRecord."""

    def __init__(self) -> None:
        self._users: dict[str, UserRecord] = {}
        self._lock = threading.Lock()

    def find_by_external_id(self, external_id: str) -> UserRecord | None:
        with self._lock:
            return self._users.get(external_id)

    def insert(self, user: UserRecord) -> None:
        with self._lock:
            if user.external_id in self._users:
                raise DuplicateUser(user.external_id)
            self._users[user.external_id] = user

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)


class RedisUserStore:
    """Redis-backed document store for user records.

    Each record is a JSON document stored under ``{prefix}{external_id}``.
    Inserts use ``SET ... NX``, which makes the external id a uniqueness
    constraint enforced by Redis itself: of two racing inserts exactly one
    wins and the other gets DuplicateUser.

    Storage Format:
        ``{"id": ..., "external_id": ..., "tenant_id": ..., "name": ..., "email": ...}``

    Example:
        ```python
        import redis

        client = redis.Redis.from_url("redis://localhost:6379/0", socket_timeout=5)
        store = RedisUserStore(client)
        ```

    Attributes:
        _client: Redis client instance. Configure ``socket_timeout`` on it;
            a timeout surfaces as StoreUnavailable.
        _prefix: Key prefix for user documents.
    """

    def __init__(self, redis_client: Any, prefix: str = _DEFAULT_PREFIX) -> None:
        self._client = redis_client
        self._prefix = prefix

    def _key(self, external_id: str) -> str:
        return f"{self._prefix}{external_id}"

    def find_by_external_id(self, external_id: str) -> UserRecord | None:
        """Load the user document for ``external_id``.

        Raises:
            StoreUnavailable: Redis could not be reached, or the stored
                document is corrupt. Never reported as "not found".
        """
        try:
            data = self._client.get(self._key(external_id))
        except RedisError as e:
            raise StoreUnavailable(f"User lookup failed: {e}") from e

        if data is None:
            return None

        try:
            return UserRecord.from_document(json.loads(data))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise StoreUnavailable(f"Corrupt user document for {external_id!r}") from e

    def insert(self, user: UserRecord) -> None:
        """Write a new user document.

        Raises:
            DuplicateUser: A document for the external id already exists.
            StoreUnavailable: Redis could not be reached.
        """
        try:
            created = self._client.set(
                self._key(user.external_id),
                json.dumps(user.to_document()),
                nx=True,
            )
        except RedisError as e:
            raise StoreUnavailable(f"User insert failed: {e}") from e

        if not created:
            raise DuplicateUser(user.external_id)
