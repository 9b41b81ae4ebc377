"""Startup wiring for the server path.

``create_auth`` builds the shared caches exactly once and hands the same
instances to every collaborator, so all request threads see one KeySet
cache and one identity cache.

Example:
    ```python
    settings = ServerSettings.from_env()
    auth = create_auth(settings)

    app = Flask(__name__)
    auth.init_app(app)
    register_error_handlers(app)

    @app.get("/todos/<todo_id>")
    @auth.require()
    def get_todo(todo_id):
        ctx = current_user_context()
        todo = todos.get(todo_id)
        require_owner(ctx, todo.tenant_id, todo.user_id)
        return todo.to_json()
    ```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import redis

from .cache_stores import IdentityCache
from .flask_extension import AuthExtension
from .identity import IdentityResolver, UserInfoClient
from .key_providers import JWKSFetcher
from .keyset_cache import KeySetCache
from .refresh_gate import RefreshGate
from .stores import InMemoryUserStore, RedisUserStore
from .verifier import JWTVerifier, JWTVerifyOptions

if TYPE_CHECKING:
    from .config import ServerSettings
    from .protocols import UserStore

logger = logging.getLogger(__name__)


def build_user_store(settings: ServerSettings) -> UserStore:
    """Select the user store backend named by ``settings.user_store``."""
    if settings.user_store == "redis":
        client = redis.Redis.from_url(
            settings.redis_url,
            socket_timeout=settings.http_timeout,
            socket_connect_timeout=settings.http_timeout,
        )
        logger.info("Using Redis user store")
        return RedisUserStore(client)

    logger.info("Using in-memory user store")
    return InMemoryUserStore()


def create_auth(settings: ServerSettings, user_store: UserStore | None = None) -> AuthExtension:
    """Build the verifier, resolver and Flask extension for ``settings``."""
    gate = None
    if settings.jwks_refresh_interval > 0:
        gate = RefreshGate(min_interval=settings.jwks_refresh_interval)

    key_sets = KeySetCache(JWKSFetcher(timeout=settings.http_timeout), refresh_gate=gate)
    verifier = JWTVerifier(
        settings.domain,
        key_sets,
        JWTVerifyOptions(
            audience=settings.audience,
            algorithms=settings.algorithms,
            issuer=settings.issuer,
        ),
    )

    resolver = IdentityResolver(
        user_store if user_store is not None else build_user_store(settings),
        UserInfoClient(settings.domain, timeout=settings.http_timeout),
        IdentityCache(capacity=settings.identity_cache_size),
    )
    return AuthExtension(verifier=verifier, resolver=resolver)
