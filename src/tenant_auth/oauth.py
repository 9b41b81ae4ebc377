"""Form-encoded calls to the identity provider's OAuth endpoints.

Shared by the device-authorization client and the credential refresh
manager. Both talk to ``{domain}/oauth/...`` with ``requests`` and an
explicit timeout, and both need the token endpoint's response turned into
a TokenPair.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Final

import requests

from .errors import TransportError
from .key_providers import normalize_domain
from .models import TokenPair

DEVICE_CODE_PATH: Final[str] = "oauth/device/code"
TOKEN_PATH: Final[str] = "oauth/token"

DEVICE_CODE_GRANT: Final[str] = "urn:ietf:params:oauth:grant-type:device_code"
REFRESH_TOKEN_GRANT: Final[str] = "refresh_token"


def endpoint(domain: str, path: str) -> str:
    return f"{normalize_domain(domain)}/{path}"


def post_form(
    session: requests.Session,
    url: str,
    data: Mapping[str, str],
    *,
    timeout: float,
    accept_client_errors: bool = False,
) -> dict[str, Any]:
    """POST ``data`` form-encoded to ``url`` and return the JSON object body.

    Args:
        accept_client_errors: Return 4xx bodies instead of failing. The token
            endpoint answers "authorization pending" with a 4xx and a JSON
            error object, which the device flow must read.

    Raises:
        TransportError: Network error, 5xx (or 4xx unless accepted), or a
            body that is not a JSON object.
    """
    try:
        resp = session.post(url, data=dict(data), timeout=timeout)
    except requests.RequestException as e:
        raise TransportError(f"POST {url} failed: {e}") from e

    if resp.status_code >= 500 or (resp.status_code >= 400 and not accept_client_errors):
        raise TransportError(f"POST {url} returned HTTP {resp.status_code}")

    try:
        body = resp.json()
    except ValueError as e:
        raise TransportError(f"POST {url} returned a non-JSON body") from e

    if not isinstance(body, dict):
        raise TransportError(f"POST {url} returned a non-object JSON body")
    return body


def token_pair(body: Mapping[str, Any]) -> TokenPair | None:
    """Build a TokenPair from a token-endpoint body, or None without ``access_token``.

    Raises:
        TransportError: The body carries a token but its fields have the
            wrong types, e.g. a numeric ``access_token`` or an ``expires_in``
            that is not a whole number of seconds.
    """
    access_token = body.get("access_token")
    if not access_token:
        return None
    if not isinstance(access_token, str):
        raise TransportError("Token response 'access_token' is not a string")

    for name in ("refresh_token", "token_type", "scope"):
        value = body.get(name)
        if value is not None and not isinstance(value, str):
            raise TransportError(f"Token response {name!r} is not a string")

    expires_in = body.get("expires_in")
    if expires_in is not None:
        if isinstance(expires_in, bool):
            raise TransportError("Token response 'expires_in' is not a number")
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError) as e:
            raise TransportError(f"Token response 'expires_in' is not a number: {e}") from e

    return TokenPair(
        access_token=access_token,
        refresh_token=body.get("refresh_token"),
        token_type=body.get("token_type"),
        expires_in=expires_in,
        scope=body.get("scope"),
    )
