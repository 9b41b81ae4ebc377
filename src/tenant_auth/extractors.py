"""Bearer token extraction from the inbound Flask request.

Security Considerations:
- Bearer tokens should only be sent over HTTPS
- Never extract tokens from URL query parameters (visible in logs/history)
"""

from __future__ import annotations

from flask import request

from .errors import MissingToken


def parse_bearer(auth_header: str | None) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` value.

    The scheme is matched case-insensitively.

    Raises:
        MissingToken: Header absent, empty, or not the Bearer scheme.
    """
    auth_header = (auth_header or "").strip()
    if not auth_header:
        raise MissingToken("Missing Authorization header")

    parts = auth_header.split(" ", 1)
    if len(parts) != 2:
        raise MissingToken("Invalid Authorization header format (expected 'Bearer <token>')")

    scheme, token = parts
    if scheme.lower() != "bearer":
        raise MissingToken("Invalid authorization scheme (expected 'Bearer')")

    return token.strip()


class BearerExtractor:
    """Extracts the JWT from the current request's Authorization header.

    Example:
        ```python
        auth = AuthExtension(verifier, resolver, extractor=BearerExtractor())
        ```
    """

    def extract(self) -> str:
        return parse_bearer(request.headers.get("Authorization"))
