"""Process configuration from the environment.

A ``.env`` file in the working directory is loaded first (python-dotenv);
real environment variables win over it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from dotenv import load_dotenv

from .device_flow import DEFAULT_SCOPE
from .errors import ConfigError
from .key_providers import normalize_domain

DEFAULT_CREDENTIALS_FILE: Final[str] = "~/.tenant-auth/credentials.json"


def _require(env: Mapping[str, str], names: tuple[str, ...]) -> None:
    missing = [name for name in names if not env.get(name)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")


def _number(
    env: Mapping[str, str],
    name: str,
    default: float,
    cast: type = float,
    *,
    minimum: float | None = None,
    exclusive: bool = False,
):
    value = env.get(name)
    if not value:
        return cast(default)
    try:
        number = cast(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e

    if minimum is not None:
        if exclusive and number <= minimum:
            raise ConfigError(f"{name} must be greater than {minimum}, got {value!r}")
        if number < minimum:
            raise ConfigError(f"{name} must be at least {minimum}, got {value!r}")
    return number


@dataclass(frozen=True, slots=True)
class ServerSettings:
    """Settings for the token-verifying service.

    Attributes:
        domain: Identity provider domain, e.g. ``https://tenant.example-idp.com``.
        audience: API identifier tokens must be issued for.
        issuer: Expected ``iss``; None disables the issuer check.
        algorithms: Allowed signing algorithms.
        identity_cache_size: Capacity of the identity LRU cache.
        http_timeout: Seconds for JWKS and user-info calls.
        user_store: ``memory`` or ``redis``.
        redis_url: Redis URL when ``user_store`` is ``redis``.
        jwks_refresh_interval: Minimum seconds between forced key-set
            refetches; 0 disables throttling.
    """

    domain: str
    audience: str
    issuer: str | None = None
    algorithms: tuple[str, ...] = ("RS256",)
    identity_cache_size: int = 1024
    http_timeout: float = 10.0
    user_store: str = "memory"
    redis_url: str | None = None
    jwks_refresh_interval: float = 0.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ServerSettings:
        if env is None:
            load_dotenv()
            env = os.environ

        _require(env, ("AUTH_DOMAIN", "AUTH_AUDIENCE"))

        user_store = env.get("USER_STORE", "memory").lower()
        if user_store not in ("memory", "redis"):
            raise ConfigError(f"USER_STORE must be 'memory' or 'redis', got {user_store!r}")
        if user_store == "redis":
            _require(env, ("REDIS_URL",))

        algorithms = tuple(
            a.strip() for a in env.get("AUTH_ALGORITHMS", "RS256").split(",") if a.strip()
        )
        if not algorithms:
            raise ConfigError("AUTH_ALGORITHMS cannot be empty")

        return cls(
            domain=normalize_domain(env["AUTH_DOMAIN"]),
            audience=env["AUTH_AUDIENCE"],
            issuer=env.get("AUTH_ISSUER") or None,
            algorithms=algorithms,
            identity_cache_size=_number(env, "IDENTITY_CACHE_SIZE", 1024, int, minimum=1),
            http_timeout=_number(env, "HTTP_TIMEOUT", 10.0, minimum=0, exclusive=True),
            user_store=user_store,
            redis_url=env.get("REDIS_URL") or None,
            jwks_refresh_interval=_number(env, "JWKS_REFRESH_INTERVAL", 0.0, minimum=0),
        )


@dataclass(frozen=True, slots=True)
class CliSettings:
    """Settings for the command-line client."""

    domain: str
    client_id: str
    audience: str
    scope: str = DEFAULT_SCOPE
    http_timeout: float = 10.0
    credentials_file: Path = Path(DEFAULT_CREDENTIALS_FILE).expanduser()

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> CliSettings:
        if env is None:
            load_dotenv()
            env = os.environ

        _require(env, ("AUTH_DOMAIN", "AUTH_CLIENT_ID", "AUTH_AUDIENCE"))

        return cls(
            domain=normalize_domain(env["AUTH_DOMAIN"]),
            client_id=env["AUTH_CLIENT_ID"],
            audience=env["AUTH_AUDIENCE"],
            scope=env.get("AUTH_SCOPE") or DEFAULT_SCOPE,
            http_timeout=_number(env, "HTTP_TIMEOUT", 10.0, minimum=0, exclusive=True),
            credentials_file=Path(
                env.get("CREDENTIALS_FILE") or DEFAULT_CREDENTIALS_FILE
            ).expanduser(),
        )
