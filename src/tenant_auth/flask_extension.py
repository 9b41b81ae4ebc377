"""Flask extension turning a bearer token into a tenant-scoped user.

Security Model:
1. Extract the bearer token from the request
2. Verify it (signature, audience, expiry) against the cached key set
3. Resolve the verified subject to an internal user (cached, or looked up
   in the user store, or provisioned on first sight)
4. Store claims and UserContext in ``flask.g`` for the route
5. Convert every failure to 401 (403 only for ownership checks)

The precise failure reason is logged; the response only carries the
error's generic description.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Final

from flask import Flask, abort, g

from .errors import AuthError
from .extractors import BearerExtractor

if TYPE_CHECKING:
    from .identity import IdentityResolver
    from .models import UserContext
    from .protocols import Extractor, TokenVerifier, ViewFunc

logger = logging.getLogger(__name__)

_EXT_KEY: Final[str] = "tenant_auth"
"""Flask extensions registry key for AuthExtension."""


class AuthExtension:
    """
    Flask decorator glue for token authentication and identity resolution.

    Responsibilities:
    - Extract token from request
    - Verify token (TokenVerifier)
    - Resolve the caller (IdentityResolver)
    - Store ``g.claims`` and ``g.user_context``
    - Convert domain errors to HTTP responses (abort)

    Pattern:
        auth = AuthExtension(verifier, resolver)
        auth.init_app(app)

    Usage:
        @app.get("/todos")
        @auth.require()
        def todos():
            ctx = current_user_context()
            ...
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        resolver: IdentityResolver,
        extractor: Extractor | None = None,
    ) -> None:
        self._verifier: TokenVerifier = verifier
        self._resolver: IdentityResolver = resolver
        self._extractor: Extractor = extractor or BearerExtractor()

    def init_app(
        self,
        app: Flask,
        *,
        verifier: TokenVerifier | None = None,
        resolver: IdentityResolver | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        """Register the extension on ``app``, optionally replacing collaborators."""
        if verifier is not None:
            self._verifier = verifier
        if resolver is not None:
            self._resolver = resolver
        if extractor is not None:
            self._extractor = extractor

        app.extensions[_EXT_KEY] = self

    def authenticate(self) -> UserContext:
        """Run extraction, verification and resolution for the current request.

        Sets ``g.claims`` and ``g.user_context`` on success.

        Raises:
            AuthError: Any extraction, verification or resolution failure.
        """
        token = self._extractor.extract()
        claims = self._verifier.verify(token)
        ctx = self._resolver.resolve(claims, token)

        g.claims = claims
        g.user_context = ctx
        return ctx

    def require(self):
        """Decorator to protect Flask routes with authentication.

        Error mapping:
        - ``MissingToken``  -> HTTP 401 ("Missing token")
        - ``Expired``       -> HTTP 401 ("Expired token")
        - ``InvalidToken``  -> HTTP 401 ("Invalid token"), whatever the step
        - resolution errors -> HTTP 401 ("Authentication failed")
        - Any other error   -> HTTP 401 ("Authentication failed")

        Side Effects:
            - Writes ``g.claims`` and ``g.user_context`` before calling the view.
            - May terminate request handling early via ``flask.abort``.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    self.authenticate()
                except AuthError as e:
                    logger.warning("Authentication failed: %s: %s", type(e).__name__, e)
                    abort(e.error_code, description=e.description)
                except Exception:
                    logger.exception("Unexpected error during authentication")
                    abort(401, description="Authentication failed")

                return view(*args, **kwargs)

            return wrapper

        return decorator


def current_user_context() -> UserContext:
    """Return the UserContext set by ``AuthExtension.require`` or abort 401."""
    ctx = g.get("user_context")
    if ctx is None:
        abort(401, description="Authentication required")
    return ctx


def register_error_handlers(app: Flask) -> None:
    """Answer AuthErrors raised inside views with their status and description.

    Lets route code call ``require_owner`` and simply let Forbidden escape.
    """

    @app.errorhandler(AuthError)
    def _auth_error(error: AuthError):
        logger.info("Request rejected: %s: %s", type(error).__name__, error)
        return {"error": error.description}, error.error_code
