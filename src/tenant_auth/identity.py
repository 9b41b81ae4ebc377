"""Mapping verified external identities to internal, tenant-scoped users.

High-level flow (per request, after verification)
-------------------------------------------------
1. IdentityCache hit on the token's ``sub`` -> UserContext.
2. Miss: look the external id up in the persistent UserStore.
3. Found: cache it, return its UserContext.
4. Not found: fetch name/email from the provider's user-info endpoint,
   create a UserRecord in a brand new tenant, persist it, cache it,
   return its UserContext.

A store that is unavailable is never mistaken for "not found": the
StoreUnavailable error propagates and nothing is provisioned.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import requests

from .errors import DuplicateUser, ProvisioningFailed, StoreUnavailable
from .key_providers import normalize_domain
from .models import UserInfo, UserRecord

if TYPE_CHECKING:
    from .cache_stores import IdentityCache
    from .models import UserContext, VerifiedClaims
    from .protocols import UserInfoSource, UserStore

logger = logging.getLogger(__name__)


class UserInfoClient:
    """Looks up name and email at ``{domain}/userinfo`` with the caller's token.

    Attributes:
        _url: Full user-info endpoint URL.
        _session: requests.Session used for the call.
        _timeout: Seconds before the lookup is abandoned.
    """

    def __init__(
        self,
        domain: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = f"{normalize_domain(domain)}/userinfo"
        self._session = session or requests.Session()
        self._timeout = timeout

    def fetch(self, token: str) -> UserInfo:
        """Return the profile of the bearer of ``token``.

        Raises:
            ProvisioningFailed: Network error, non-2xx status, non-JSON body,
                or a profile without string ``sub``, ``name`` and ``email``.
        """
        try:
            resp = self._session.get(
                self._url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            body: Any = resp.json()
        except requests.RequestException as e:
            raise ProvisioningFailed(f"User-info lookup failed: {e}") from e
        except ValueError as e:
            raise ProvisioningFailed("User-info response is not JSON") from e

        if not isinstance(body, dict):
            raise ProvisioningFailed("User-info response is not a JSON object")

        fields = {name: body.get(name) for name in ("sub", "name", "email")}
        missing = [name for name, value in fields.items() if not isinstance(value, str)]
        if missing:
            raise ProvisioningFailed(f"User-info response missing {', '.join(missing)}")

        return UserInfo(sub=fields["sub"], name=fields["name"], email=fields["email"])


def new_tenant_id() -> str:
    return str(uuid.uuid4())


class IdentityResolver:
    """Resolves verified claims to a tenant-scoped UserContext.

    Concurrency:
        Cache hits take only the IdentityCache lock. A miss takes a lock of
        its own external id, created on demand and dropped once no request
        holds or waits for it. Concurrent first requests from the same new
        identity therefore provision once per process, and a slow user-info
        call for one identity never delays another.

        Across processes the store's uniqueness constraint decides: the
        loser of an insert race gets DuplicateUser and re-reads the
        winner's record.

    Attributes:
        _store: Persistent user store (any UserStore backend).
        _user_info: Source of name/email for first-seen identities.
        _cache: The shared IdentityCache built at startup.
        _tenant_ids: Factory for fresh tenant ids.
        _pending: external id -> [lock, number of requests using it].
    """

    def __init__(
        self,
        store: UserStore,
        user_info: UserInfoSource,
        cache: IdentityCache,
        *,
        tenant_id_factory: Callable[[], str] = new_tenant_id,
    ) -> None:
        self._store = store
        self._user_info = user_info
        self._cache = cache
        self._tenant_ids = tenant_id_factory
        self._lock = threading.Lock()
        self._pending: dict[str, list[Any]] = {}

    @contextmanager
    def _identity_lock(self, external_id: str) -> Iterator[None]:
        with self._lock:
            entry = self._pending.get(external_id)
            if entry is None:
                entry = self._pending[external_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._pending[external_id]

    def resolve(self, claims: VerifiedClaims, token: str) -> UserContext:
        """Return the UserContext for the subject of ``claims``.

        Args:
            claims: Claims returned by a successful verification.
            token: The verified raw token, used for the user-info lookup
                when the identity is seen for the first time.

        Raises:
            StoreUnavailable: The user store could not be queried or written.
            ProvisioningFailed: First sight, and the user-info lookup failed.
        """
        external_id = claims.subject

        record = self._cache.get(external_id)
        if record is not None:
            return record.context()

        with self._identity_lock(external_id):
            record = self._cache.get(external_id)
            if record is None:
                record = self._store.find_by_external_id(external_id)
                if record is None:
                    record = self._provision(external_id, token)
                self._cache.put(record)

        return record.context()

    def _provision(self, external_id: str, token: str) -> UserRecord:
        info = self._user_info.fetch(token)
        if info.sub != external_id:
            raise ProvisioningFailed("User-info subject does not match the verified token")

        record = UserRecord.new(
            external_id=external_id,
            name=info.name,
            email=info.email,
            tenant_id=self._tenant_ids(),
        )
        try:
            self._store.insert(record)
        except DuplicateUser:
            logger.info("Lost provisioning race for %s, reloading", external_id)
            winner = self._store.find_by_external_id(external_id)
            if winner is None:
                raise StoreUnavailable(
                    f"Store reported a duplicate for {external_id!r} but has no record"
                ) from None
            return winner

        logger.info("Provisioned user %s in new tenant %s", record.id, record.tenant_id)
        return record
