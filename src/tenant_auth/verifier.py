"""JWT verification against a cached, rotating key set, using PyJWT.

This module provides:
- ``verify_token``: the pure check of one token against one KeySet
- ``JWTVerifier``: the request-path verifier that pulls the KeySet from
  the shared KeySetCache and forces exactly one refetch when the token's
  ``kid`` is unknown (the normal signal that the provider rotated keys)

Verification steps, in order:
1. Read the unverified header for ``kid`` (MalformedToken)
2. Look the key up in the KeySet (UnknownKey)
3. Verify the signature with the key's algorithm (BadSignature)
4. Check the required audience is in ``aud`` (AudienceMismatch)
5. Check ``exp`` is still in the future (Expired)

All time comparisons use whole-second Unix timestamps.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import jwt

from .errors import (
    AudienceMismatch,
    BadSignature,
    Expired,
    InvalidToken,
    MalformedToken,
    UnknownKey,
)
from .models import VerifiedClaims, audience_list

if TYPE_CHECKING:
    from .keyset_cache import KeySetCache
    from .models import KeySet

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JWTVerifyOptions:
    """Configuration for JWT validation rules.

    Attributes:
        audience: Required audience. The token's ``aud`` list must contain it.

        algorithms: Allowed signing algorithms. MUST be an explicit
            allowlist to prevent algorithm confusion attacks. A key whose
            algorithm is not listed never verifies anything.
            Default: ("RS256",)

        issuer: Expected ``iss`` claim. If None, the issuer is not checked.

        leeway: Clock skew tolerance in whole seconds for the expiry check.
            Default: 0 (no leeway).
    """

    audience: str
    algorithms: tuple[str, ...] = ("RS256",)
    issuer: str | None = None
    leeway: int = 0


def _split_kid(token: str) -> str:
    if not isinstance(token, str) or token.count(".") != 2:
        raise MalformedToken("Token does not have three dot-separated parts")

    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        raise MalformedToken(f"Unreadable token header: {e}") from e

    kid = header.get("kid")
    if not kid or not isinstance(kid, str):
        raise MalformedToken("Token header missing required 'kid' or 'kid' is not a string")
    return kid


def verify_token(
    token: str,
    key_set: KeySet,
    options: JWTVerifyOptions,
    *,
    now: int | None = None,
) -> VerifiedClaims:
    """Verify ``token`` against ``key_set`` and return its claims.

    Args:
        token: Raw JWT string.
        key_set: Keys to verify against. Not refreshed here.
        options: Audience, algorithm allowlist, issuer and leeway.
        now: Current Unix time; defaults to ``int(time.time())``.

    Raises:
        MalformedToken: Not a three-part token, no ``kid``, or bad claim shapes.
        UnknownKey: ``kid`` is not in ``key_set``.
        BadSignature: Signature mismatch or disallowed algorithm.
        InvalidToken: Issuer mismatch (only when ``options.issuer`` is set).
        AudienceMismatch: Required audience missing from ``aud``.
        Expired: ``exp`` is not after ``now``.
    """
    kid = _split_kid(token)

    key = key_set.find(kid)
    if key is None:
        raise UnknownKey(f"No key with kid {kid!r} in key set for {key_set.domain}")

    if key.algorithm_name not in options.algorithms:
        raise BadSignature(f"Key {kid!r} uses disallowed algorithm {key.algorithm_name}")

    # Audience and expiry are checked below, in that order, with integer time.
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[key.algorithm_name],
            issuer=options.issuer,
            options={
                "verify_signature": True,
                "verify_aud": False,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_iss": options.issuer is not None,
            },
        )
    except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as e:
        raise BadSignature(f"Signature verification failed: {e}") from e
    except jwt.InvalidIssuerError as e:
        raise InvalidToken(f"Issuer mismatch: {e}") from e
    except jwt.DecodeError as e:
        raise MalformedToken(f"Token could not be decoded: {e}") from e
    except jwt.InvalidTokenError as e:
        raise InvalidToken(f"Token validation failed: {e}") from e

    if options.audience not in audience_list(payload.get("aud")):
        raise AudienceMismatch(f"Token audience does not include {options.audience!r}")

    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, int):
        raise MalformedToken("Token payload missing integer 'exp' claim")

    iat = payload.get("iat", 0)
    if isinstance(iat, bool) or not isinstance(iat, int):
        raise MalformedToken("Token payload has a non-integer 'iat' claim")

    if now is None:
        now = int(time.time())
    if now >= exp + options.leeway:
        raise Expired(f"Token expired at {exp}, now {now}")

    return VerifiedClaims._from_payload(payload)


class JWTVerifier:
    """Request-path verifier bound to one identity domain.

    Architecture:
        1. Take the domain's KeySet from the shared KeySetCache
           (fetching it on first use)
        2. Verify with ``verify_token``
        3. On UnknownKey, force one refetch through the cache and verify
           once more; a second UnknownKey is terminal

    Thread Safety:
        Holds no mutable state of its own. All sharing goes through the
        KeySetCache, which must be the single instance built at startup.

    Example:
        ```python
        cache = KeySetCache(JWKSFetcher(timeout=5))
        verifier = JWTVerifier(
            "https://tenant.example-idp.com",
            cache,
            JWTVerifyOptions(audience="https://api.example.com/"),
        )
        claims = verifier.verify(raw_token)
        ```
    """

    def __init__(
        self,
        domain: str,
        key_sets: KeySetCache,
        options: JWTVerifyOptions,
    ) -> None:
        self._domain = domain
        self._key_sets = key_sets
        self._opt = options

    @property
    def domain(self) -> str:
        return self._domain

    def verify(self, token: str) -> VerifiedClaims:
        """Verify a JWT and return its claims.

        Raises:
            FetchFailed: The key set could not be retrieved.
            MalformedToken, UnknownKey, BadSignature, AudienceMismatch,
            InvalidToken, Expired: See ``verify_token``.
        """
        key_set = self._key_sets.get_or_fetch(self._domain)
        try:
            return verify_token(token, key_set, self._opt)
        except UnknownKey:
            logger.info("Unknown signing key for %s, forcing key set refetch", self._domain)

        key_set = self._key_sets.refresh(self._domain, stale=key_set)
        return verify_token(token, key_set, self._opt)
