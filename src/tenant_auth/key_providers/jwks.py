"""
JWKS key-set fetcher.

Retrieves an identity domain's public signing keys from its well-known
discovery document and parses them into an immutable KeySet.
"""

from __future__ import annotations

import logging
import time
from typing import Final

from jwt import PyJWKClient, PyJWTError

from ..errors import FetchFailed
from ..models import KeySet

logger = logging.getLogger(__name__)

JWKS_PATH: Final[str] = ".well-known/jwks.json"


def normalize_domain(domain: str) -> str:
    """Return ``domain`` with a scheme and without a trailing slash.

    ``tenant.example-idp.com`` becomes ``https://tenant.example-idp.com``;
    an explicit ``http://`` (local test servers) is kept.
    """
    domain = domain.strip().rstrip("/")
    if not domain:
        raise ValueError("domain cannot be empty")
    if "://" not in domain:
        domain = f"https://{domain}"
    return domain


def jwks_url(domain: str) -> str:
    return f"{normalize_domain(domain)}/{JWKS_PATH}"


class JWKSFetcher:
    """
    Fetches ``{domain}/.well-known/jwks.json`` and parses it into a KeySet.

    Responsibilities
    ----------------
    1. Issue exactly one retrieval of the discovery document per call.
    2. Parse it into signing keys (``use`` of ``sig`` or unset, with a ``kid``).
    3. Turn every network, HTTP and parse failure into ``FetchFailed``.

    It does not cache and does not retry: KeySetCache owns both decisions.

    Parameters
    ----------
    timeout : float
        Seconds to wait for the discovery endpoint. A timeout surfaces as
        ``FetchFailed`` rather than a hang.

    headers : dict | None
        Extra request headers (e.g. a User-Agent required by a proxy).

    Notes
    -----
    PyJWKClient is built with its own caches disabled so every call here
    really goes to the network; keeping a second, hidden cache inside the
    client would defeat the forced refetch on key rotation.

    Example
    -------
    fetcher = JWKSFetcher(timeout=5)
    key_set = fetcher.fetch("https://tenant.example-idp.com")
    """

    def __init__(self, timeout: float = 10.0, headers: dict[str, str] | None = None) -> None:
        self._timeout = timeout
        self._headers = headers or {}

    def _client(self, domain: str) -> PyJWKClient:
        return PyJWKClient(
            jwks_url(domain),
            cache_keys=False,
            cache_jwk_set=False,
            headers=self._headers,
            timeout=self._timeout,
        )

    def fetch(self, domain: str) -> KeySet:
        domain = normalize_domain(domain)
        client = self._client(domain)

        logger.info("Fetching key set from %s", client.uri)
        try:
            keys = client.get_signing_keys(refresh=True)
        except PyJWTError as e:
            logger.error("Key set fetch from %s failed: %s", client.uri, e)
            raise FetchFailed(f"Unable to fetch key set for {domain}: {e}") from e
        except ValueError as e:
            # json.JSONDecodeError from a non-JSON body
            logger.error("Key set from %s is not valid JSON: %s", client.uri, e)
            raise FetchFailed(f"Key set for {domain} is not valid JSON") from e

        logger.info("Fetched %d signing keys for %s", len(keys), domain)
        return KeySet(domain=domain, keys=tuple(keys), fetched_at=time.time())
