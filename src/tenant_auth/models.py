"""Value types shared by the server path and the CLI path.

All types are immutable dataclasses. A KeySet is replaced wholesale on
refresh, a UserRecord is created exactly once per external identity, and
a UserContext is only ever derived from a resolved UserRecord.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .errors import Forbidden, MalformedToken

if TYPE_CHECKING:
    from jwt import PyJWK


@dataclass(frozen=True, slots=True)
class KeySet:
    """Public signing keys published by one identity domain.

    Attributes:
        domain: Normalised identity domain the keys were fetched from.
        keys: Keys in the order the discovery document lists them.
        fetched_at: Unix timestamp of the fetch.
    """

    domain: str
    keys: tuple[PyJWK, ...]
    fetched_at: float

    def find(self, kid: str) -> PyJWK | None:
        for key in self.keys:
            if key.key_id == kid:
                return key
        return None

    def __len__(self) -> int:
        return len(self.keys)


@dataclass(frozen=True, slots=True)
class VerifiedClaims:
    """Claims of a token whose signature, audience and expiry were checked.

    Only ``verifier.verify_token`` builds these. Nothing else should: an
    instance is the proof that verification succeeded.

    Attributes:
        issuer: ``iss`` claim (empty string when absent).
        subject: ``sub`` claim, the opaque external identity.
        audience: ``aud`` normalised to a tuple.
        issued_at: ``iat`` claim, whole seconds (0 when absent).
        expires_at: ``exp`` claim, whole seconds.
        authorized_party: ``azp`` claim (empty string when absent).
        scope: ``scope`` claim (empty string when absent).
        raw: The full verified payload, read-only.
    """

    issuer: str
    subject: str
    audience: tuple[str, ...]
    issued_at: int
    expires_at: int
    authorized_party: str
    scope: str
    raw: Mapping[str, Any] = field(repr=False, compare=False)

    @classmethod
    def _from_payload(cls, payload: Mapping[str, Any]) -> VerifiedClaims:
        subject = payload.get("sub")
        if not subject or not isinstance(subject, str):
            raise MalformedToken("Token payload missing 'sub' claim")

        return cls(
            issuer=str(payload.get("iss", "")),
            subject=subject,
            audience=audience_list(payload.get("aud")),
            issued_at=payload.get("iat", 0),
            expires_at=payload["exp"],
            authorized_party=str(payload.get("azp", "")),
            scope=str(payload.get("scope", "")),
            raw=MappingProxyType(dict(payload)),
        )

    @property
    def scopes(self) -> frozenset[str]:
        return frozenset(self.scope.split())


def audience_list(aud: Any) -> tuple[str, ...]:
    """Normalise an ``aud`` claim (string, list or missing) to a tuple."""
    if aud is None:
        return ()
    if isinstance(aud, str):
        return (aud,)
    if isinstance(aud, (list, tuple)):
        return tuple(a for a in aud if isinstance(a, str))
    raise MalformedToken("Token 'aud' claim must be a string or a list")


@dataclass(frozen=True, slots=True)
class UserInfo:
    """Profile returned by the identity provider's user-info endpoint."""

    sub: str
    name: str
    email: str


@dataclass(frozen=True, slots=True)
class UserRecord:
    """Internal, tenant-scoped user.

    Attributes:
        id: Internal user id (UUID4 string).
        external_id: Identity provider subject this user was provisioned for.
        tenant_id: Tenant the user belongs to.
        name: Display name from the provider's user-info.
        email: Email from the provider's user-info.
    """

    id: str
    external_id: str
    tenant_id: str
    name: str
    email: str

    @classmethod
    def new(cls, external_id: str, name: str, email: str, tenant_id: str) -> UserRecord:
        return cls(
            id=str(uuid.uuid4()),
            external_id=external_id,
            tenant_id=tenant_id,
            name=name,
            email=email,
        )

    def to_document(self) -> dict[str, str]:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "email": self.email,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> UserRecord:
        return cls(
            id=doc["id"],
            external_id=doc["external_id"],
            tenant_id=doc["tenant_id"],
            name=doc["name"],
            email=doc["email"],
        )

    def context(self) -> UserContext:
        return UserContext(tenant_id=self.tenant_id, user_id=self.id)


@dataclass(frozen=True, slots=True)
class UserContext:
    """Tenant id plus user id handed to resource handlers.

    Built only by ``UserRecord.context()`` inside the identity resolver.
    """

    tenant_id: str
    user_id: str

    def owns(self, tenant_id: str, user_id: str) -> bool:
        return self.tenant_id == tenant_id and self.user_id == user_id


def require_owner(ctx: UserContext, tenant_id: str, user_id: str) -> None:
    """Raise Forbidden unless ``ctx`` owns a resource with the given ids.

    Raises:
        Forbidden: If either the tenant id or the user id differs.
    """
    if not ctx.owns(tenant_id, user_id):
        raise Forbidden("Resource is owned by a different tenant or user")


@dataclass(frozen=True, slots=True)
class DeviceSession:
    """One device-authorization attempt.

    Attributes:
        device_code: Secret code the client polls with.
        user_code: Short code the user types on the verification page.
        verification_uri: Page where the user enters ``user_code``.
        verification_uri_complete: Same page with the code pre-filled.
        expires_in: Seconds the device code stays valid.
        interval: Seconds to wait between polls.
    """

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int
    interval: int


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access and refresh token as returned by the token endpoint."""

    access_token: str
    refresh_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    scope: str | None = None

    def to_credentials(self) -> dict[str, str]:
        data = {"access_token": self.access_token}
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        return data


class DeviceFlowState(enum.Enum):
    REQUESTING = "requesting"
    AWAITING_USER = "awaiting_user"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    EXPIRED = "expired"
    TRANSPORT_ERROR = "transport_error"
