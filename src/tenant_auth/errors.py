"""Authentication, resolution and client-flow errors.

This module defines the exception hierarchy for every failure the server
path and the CLI path can produce. All errors inherit from AuthError so
callers can catch a single type.

Each class carries an ``error_code`` (the HTTP status the Flask extension
answers with) and a ``description`` that is safe to return to clients.
The message passed to the constructor holds the precise reason and is
meant for server-side logs only.

Security Note:
    The four InvalidToken subclasses share one description so a caller
    cannot tell "bad signature" from "unknown key" and learn about key
    rotation.
"""

from __future__ import annotations

from typing import ClassVar


class AuthError(Exception):
    """Base exception for all authentication and authorization failures.

    Attributes:
        error_code: HTTP status used when this error ends a request.
        description: Generic, client-safe explanation.
    """

    error_code: ClassVar[int] = 401
    description: ClassVar[str] = "Authentication failed"


class MissingToken(AuthError):  # noqa: N818
    """Raised when no bearer token is present in the request.

    This occurs when:
    - The Authorization header is missing
    - The header does not use the ``Bearer <token>`` form
    - The token part is empty
    """

    description = "Missing token"


class InvalidToken(AuthError):  # noqa: N818
    """Raised when a token is present but cannot be verified.

    Raised as-is for an issuer mismatch; the subclasses below name the
    other failing steps.
    """

    description = "Invalid token"


class MalformedToken(InvalidToken):  # noqa: N818
    """Token is not a three-part JWS, its header has no ``kid``, or a
    required claim has the wrong shape."""


class UnknownKey(InvalidToken):  # noqa: N818
    """The token's ``kid`` is not present in the key set.

    The verifier reacts to the first UnknownKey with a single forced
    key-set refetch; a second one is terminal.
    """


class BadSignature(InvalidToken):  # noqa: N818
    """Signature mismatch, or the key's algorithm is not allowed."""


class AudienceMismatch(InvalidToken):  # noqa: N818
    """The token's audience list does not contain the required audience."""


class Expired(AuthError):  # noqa: N818
    """The token's ``exp`` is not in the future.

    Treat identically to InvalidToken from a security perspective. The
    distinction helps with metrics and lets clients know to refresh.
    """

    description = "Expired token"


class Forbidden(AuthError):  # noqa: N818
    """A verified caller does not own the resource it asked for.

    This is the only error that should result in 403. All others are 401.
    """

    error_code = 403
    description = "Forbidden"


class FetchFailed(AuthError):  # noqa: N818
    """The discovery document could not be retrieved or parsed."""


class ProvisioningFailed(AuthError):  # noqa: N818
    """A first-seen identity could not be provisioned (user-info lookup failed)."""


class StoreUnavailable(AuthError):  # noqa: N818
    """A persistent store could not be reached.

    Distinct from "not found": the identity resolver never provisions a
    user because of this error.
    """


class DuplicateUser(Exception):  # noqa: N818
    """Raised by a user store when the external id is already taken.

    Internal signal between stores and the identity resolver; the resolver
    answers it with a fresh lookup and it is never surfaced to callers.
    """

    def __init__(self, external_id: str) -> None:
        super().__init__(f"User with external id {external_id!r} already exists")
        self.external_id = external_id


class TransportError(AuthError):  # noqa: N818
    """An identity-provider endpoint could not be reached or answered garbage."""


class DeviceCodeExpired(AuthError):  # noqa: N818
    """The device code expired before the user completed authorization."""

    description = "Device code expired"


class AccessDenied(AuthError):  # noqa: N818
    """The user declined the device authorization request."""

    error_code = 403
    description = "Access denied"


class ConfigError(AuthError):  # noqa: N818
    """Required configuration is missing or invalid."""

    error_code = 500
    description = "Server misconfigured"
