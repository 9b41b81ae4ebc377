"""Protocol definitions for the collaborators of this package.

This module defines structural interfaces using Protocol (PEP 544) for:
- Key-set retrieval
- Token verification
- Persistent user storage
- User-info lookup
- Credential storage on the CLI side
- Token extraction from requests

Using protocols allows for duck-typing and easier testing without
requiring explicit inheritance. Any class that implements the required
methods satisfies the protocol.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .models import KeySet, UserInfo, UserRecord, VerifiedClaims

# ============================================================================
# Type Aliases
# ============================================================================

type Claims = Mapping[str, Any]
"""Decoded JWT payload as an immutable mapping."""

type ViewFunc = Callable[..., Any]
"""Type alias for Flask view functions."""


# ============================================================================
# Server path
# ============================================================================


class KeySetFetcher(Protocol):
    """Retrieves the current key set for an identity domain.

    One network retrieval per call, no retry. Caching is the job of
    KeySetCache, not of the fetcher.
    """

    def fetch(self, domain: str) -> KeySet:
        """Fetch and parse ``{domain}/.well-known/jwks.json``.

        Raises:
            FetchFailed: On network, HTTP or parse errors.
        """
        ...


class TokenVerifier(Protocol):
    """Verifies a raw token and returns its claims."""

    def verify(self, token: str) -> VerifiedClaims:
        """Verify a JWT and return its decoded claims.

        Raises:
            InvalidToken: Token malformed, key unknown, signature or audience invalid.
            Expired: Token's exp claim has passed.
            FetchFailed: Key set could not be retrieved.
        """
        ...


class UserStore(Protocol):
    """Persistent user storage, as far as identity resolution needs it.

    Implementations must treat ``external_id`` as a uniqueness constraint.
    """

    def find_by_external_id(self, external_id: str) -> UserRecord | None:
        """Return the user provisioned for ``external_id``, or None.

        Raises:
            StoreUnavailable: The store could not be queried. Never returned
                as None, so callers can tell "not found" from "unavailable".
        """
        ...

    def insert(self, user: UserRecord) -> None:
        """Persist a new user.

        Raises:
            DuplicateUser: A user with the same external id already exists.
            StoreUnavailable: The store could not be written.
        """
        ...


class UserInfoSource(Protocol):
    """Looks up the profile of the caller a token was issued to."""

    def fetch(self, token: str) -> UserInfo:
        """Return name and email for the bearer of ``token``.

        Raises:
            ProvisioningFailed: The lookup failed or returned an incomplete profile.
        """
        ...


class Extractor(Protocol):
    """Extracts a raw JWT from the current Flask request."""

    def extract(self) -> str:
        """Return the raw JWT string.

        Raises:
            MissingToken: Token not found or improperly formatted.
        """
        ...


# ============================================================================
# CLI path
# ============================================================================


class CredentialStore(Protocol):
    """Opaque key-value storage for ``access_token`` / ``refresh_token``."""

    def load(self) -> dict[str, str]:
        """Return stored credentials; an empty dict when nothing is stored."""
        ...

    def save(self, data: Mapping[str, str]) -> None:
        """Replace stored credentials with ``data``."""
        ...

    def delete(self) -> bool:
        """Remove stored credentials. Return whether anything was removed."""
        ...
