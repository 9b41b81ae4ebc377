"""Keeping the CLI's stored access token usable.

``CredentialRefreshManager.ensure_access_token`` loads the stored token
pair, reads the access token's expiry *without* checking its signature,
and trades the refresh token for a new pair when the access token is
expired.

The unverified read lives in this module on purpose and nowhere else: it
answers "does the CLI believe its own token is stale", never "who is this
caller". Server code must use ``verifier.verify_token``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import jwt
import requests

from .errors import TransportError
from .oauth import REFRESH_TOKEN_GRANT, TOKEN_PATH, endpoint, post_form, token_pair

if TYPE_CHECKING:
    from .models import TokenPair
    from .protocols import CredentialStore

logger = logging.getLogger(__name__)


def unverified_expiry(token: str) -> int | None:
    """Return the ``exp`` of ``token`` without verifying it, or None if unreadable."""
    try:
        payload = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.PyJWTError:
        return None

    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, int):
        return None
    return exp


def is_expired(token: str, *, now: int | None = None) -> bool:
    """True when the token's expiry has passed or cannot be read."""
    exp = unverified_expiry(token)
    if exp is None:
        return True
    if now is None:
        now = int(time.time())
    return exp < now


class CredentialRefreshManager:
    """Supplies a valid access token to CLI commands.

    Attributes:
        _token_url: ``{domain}/oauth/token``.
        _client_id: OAuth client id of the CLI.
        _session: requests.Session for the refresh call.
        _timeout: Seconds before the refresh call is abandoned.
    """

    def __init__(
        self,
        domain: str,
        client_id: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._token_url = endpoint(domain, TOKEN_PATH)
        self._client_id = client_id
        self._session = session or requests.Session()
        self._timeout = timeout

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange ``refresh_token`` for a new token pair.

        Raises:
            TransportError: The call failed or returned no access token.
        """
        body = post_form(
            self._session,
            self._token_url,
            {
                "grant_type": REFRESH_TOKEN_GRANT,
                "client_id": self._client_id,
                "refresh_token": refresh_token,
            },
            timeout=self._timeout,
        )
        pair = token_pair(body)
        if pair is None:
            reason = body.get("error_description") or body.get("error") or "no access token"
            raise TransportError(f"Token refresh rejected: {reason}")
        return pair

    def ensure_access_token(self, store: CredentialStore) -> str | None:
        """Return a non-expired access token, refreshing it if needed.

        Returns:
            The access token, or None when no credentials are stored (the
            caller should tell the user to log in).

        Raises:
            TransportError: The refresh failed. Terminal for this invocation.
            StoreUnavailable: The credential store could not be read or written.
        """
        credentials = store.load()
        access_token = credentials.get("access_token")
        refresh_token = credentials.get("refresh_token")
        if not access_token or not refresh_token:
            return None

        if not is_expired(access_token):
            return access_token

        logger.info("Stored access token expired, refreshing")
        pair = self.refresh(refresh_token)

        # Providers without refresh-token rotation omit a new refresh token.
        credentials["access_token"] = pair.access_token
        credentials["refresh_token"] = pair.refresh_token or refresh_token
        store.save(credentials)
        return pair.access_token
