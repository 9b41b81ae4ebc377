"""
Token authentication and tenant identity resolution.

High-level flow (per request)
-----------------------------
1. `AuthExtension.require()` decorator runs.
2. `BearerExtractor` pulls the raw JWT from `Authorization: Bearer <token>`.
3. `JWTVerifier.verify(token)`:
   - Takes the domain's KeySet from the shared `KeySetCache`
     (fetched once via `JWKSFetcher`)
   - Checks kid, signature, audience and expiry
   - On an unknown kid, forces one key-set refetch and retries once
4. `IdentityResolver.resolve(claims, token)`:
   - `IdentityCache` hit, or `UserStore` lookup, or provisioning of a new
     user in a new tenant from the provider's user-info
5. On success: `flask.g.claims` and `flask.g.user_context` are set.

CLI flow
--------
`DeviceAuthorizationClient.login()` obtains a `TokenPair`, which is saved to
a `CredentialStore`. `CredentialRefreshManager.ensure_access_token(store)`
later returns the stored access token, refreshing it when it has expired.

Example usage
-------------

.. code-block:: python

    from tenant_auth import (
        AuthExtension,
        IdentityCache,
        IdentityResolver,
        InMemoryUserStore,
        JWKSFetcher,
        JWTVerifier,
        JWTVerifyOptions,
        KeySetCache,
        UserInfoClient,
    )

    domain = "https://your-tenant.example-idp.com"

    # Shared caches: build once per process
    key_sets = KeySetCache(JWKSFetcher(timeout=5))
    identities = IdentityCache(capacity=1000)

    verifier = JWTVerifier(
        domain,
        key_sets,
        JWTVerifyOptions(audience="https://api.example.com/"),
    )
    resolver = IdentityResolver(
        InMemoryUserStore(),
        UserInfoClient(domain, timeout=5),
        identities,
    )

    auth = AuthExtension(verifier=verifier, resolver=resolver)
    auth.init_app(app)

    @app.route("/me")
    @auth.require()
    def me():
        ctx = current_user_context()
        return {"tenant": ctx.tenant_id, "user": ctx.user_id}
"""

# App wiring
from .app import build_user_store, create_auth

# Identity cache
from .cache_stores import IdentityCache

# Config
from .config import CliSettings, ServerSettings

# Credential storage
from .credentials import FileCredentialStore

# Device flow
from .device_flow import DeviceAuthorizationClient

# Errors
from .errors import (
    AccessDenied,
    AudienceMismatch,
    AuthError,
    BadSignature,
    ConfigError,
    DeviceCodeExpired,
    DuplicateUser,
    Expired,
    FetchFailed,
    Forbidden,
    InvalidToken,
    MalformedToken,
    MissingToken,
    ProvisioningFailed,
    StoreUnavailable,
    TransportError,
    UnknownKey,
)

# Extractors
from .extractors import BearerExtractor, parse_bearer

# Flask extension
from .flask_extension import AuthExtension, current_user_context, register_error_handlers

# Identity resolution
from .identity import IdentityResolver, UserInfoClient

# Key providers
from .key_providers import JWKSFetcher

# Key set cache
from .keyset_cache import KeySetCache

# Models
from .models import (
    DeviceFlowState,
    DeviceSession,
    KeySet,
    TokenPair,
    UserContext,
    UserInfo,
    UserRecord,
    VerifiedClaims,
    require_owner,
)

# Protocols
from .protocols import (
    Claims,
    CredentialStore,
    Extractor,
    KeySetFetcher,
    TokenVerifier,
    UserInfoSource,
    UserStore,
    ViewFunc,
)

# Credential refresh
from .refresh import CredentialRefreshManager

# Refresh gate
from .refresh_gate import RefreshGate

# User stores
from .stores import InMemoryUserStore, RedisUserStore

# Verifier
from .verifier import JWTVerifier, JWTVerifyOptions, verify_token

__all__ = [
    # Errors
    "AccessDenied",
    "AudienceMismatch",
    "AuthError",
    "BadSignature",
    "ConfigError",
    "DeviceCodeExpired",
    "DuplicateUser",
    "Expired",
    "FetchFailed",
    "Forbidden",
    "InvalidToken",
    "MalformedToken",
    "MissingToken",
    "ProvisioningFailed",
    "StoreUnavailable",
    "TransportError",
    "UnknownKey",
    # Protocols
    "Claims",
    "CredentialStore",
    "Extractor",
    "KeySetFetcher",
    "TokenVerifier",
    "UserInfoSource",
    "UserStore",
    "ViewFunc",
    # Models
    "DeviceFlowState",
    "DeviceSession",
    "KeySet",
    "TokenPair",
    "UserContext",
    "UserInfo",
    "UserRecord",
    "VerifiedClaims",
    "require_owner",
    # Extractors
    "BearerExtractor",
    "parse_bearer",
    # Verifier
    "JWTVerifier",
    "JWTVerifyOptions",
    "verify_token",
    # Key providers and caches
    "JWKSFetcher",
    "KeySetCache",
    "RefreshGate",
    "IdentityCache",
    # Identity resolution
    "IdentityResolver",
    "UserInfoClient",
    "InMemoryUserStore",
    "RedisUserStore",
    # Flask extension
    "AuthExtension",
    "current_user_context",
    "register_error_handlers",
    # CLI side
    "CredentialRefreshManager",
    "DeviceAuthorizationClient",
    "FileCredentialStore",
    # Config and wiring
    "CliSettings",
    "ServerSettings",
    "build_user_store",
    "create_auth",
]
