import time
from typing import Any

import jwt
import pytest
import requests
from cryptography.hazmat.primitives.asymmetric import rsa
from flask import Flask
from jwt import PyJWK
from jwt.algorithms import RSAAlgorithm
from redis.exceptions import ConnectionError as RedisConnectionError

from tenant_auth import KeySet

DOMAIN = "https://tenant.example-idp.com"
AUDIENCE = "https://api.example.com/"


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def jwk_dict(private_key: rsa.RSAPrivateKey, kid: str) -> dict[str, Any]:
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return jwk


@pytest.fixture
def make_jwk():
    """
    Factory fixture that returns a function.

    Usage in tests:
        jwk = make_jwk(rsa_key, kid="k1")
    """

    def _make(private_key: rsa.RSAPrivateKey, *, kid: str = "kid1") -> PyJWK:
        return PyJWK.from_dict(jwk_dict(private_key, kid))

    return _make


@pytest.fixture
def make_key_set(make_jwk):
    def _make(*pairs: tuple[rsa.RSAPrivateKey, str], domain: str = DOMAIN) -> KeySet:
        keys = tuple(make_jwk(key, kid=kid) for key, kid in pairs)
        return KeySet(domain=domain, keys=keys, fetched_at=time.time())

    return _make


@pytest.fixture
def make_token(rsa_key):
    """
    Signs RS256 tokens. Defaults: sub "user-1", aud AUDIENCE, exp in one hour.
    A claim passed as None is left out of the payload.

    Usage in tests:
        token = make_token(kid="k1", exp=123)
        token = make_token(key=other_rsa_key, sub="user-2")
    """

    def _make(
        *,
        key: rsa.RSAPrivateKey | None = None,
        kid: str | None = "kid1",
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": f"{DOMAIN}/",
            "sub": "user-1",
            "aud": AUDIENCE,
            "iat": now,
            "exp": now + 3600,
        }
        payload.update(claims)
        payload = {name: value for name, value in payload.items() if value is not None}
        headers = {"kid": kid} if kid is not None else None
        return jwt.encode(payload, key or rsa_key, algorithm="RS256", headers=headers)

    return _make


class StaticFetcher:
    """Duck-typed KeySetFetcher returning queued KeySets, the last one repeating."""

    def __init__(self, *key_sets: KeySet):
        self._key_sets = list(key_sets)
        self.calls: list[str] = []

    def fetch(self, domain: str) -> KeySet:
        self.calls.append(domain)
        if len(self._key_sets) > 1:
            return self._key_sets.pop(0)
        return self._key_sets[0]


class FakeRedis:
    """
    Minimal redis stub for RedisUserStore tests.
    Stores bytes under keys and supports ``set(..., nx=True)``.
    Set ``down = True`` to make every call fail like a dropped connection.
    """

    def __init__(self):
        self._store: dict[str, bytes] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    def get(self, key: str):
        self._check()
        return self._store.get(key)

    def set(self, key: str, value: str | bytes, nx: bool = False):
        self._check()
        if nx and key in self._store:
            return None
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._store[key] = value
        return True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


NOT_JSON = object()


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is NOT_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """
    Duck-typed requests.Session. Answers GET and POST from one queue of
    FakeResponses (or exceptions to raise) and records every call.
    """

    def __init__(self, *responses: FakeResponse | Exception):
        self._responses = list(responses)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def _next(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        if not self._responses:
            raise AssertionError(f"Unexpected {method} {url}")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("POST", url, **kwargs)


class MemoryCredentialStore:
    """Duck-typed CredentialStore keeping credentials in a dict."""

    def __init__(self, data: dict[str, str] | None = None):
        self.data = dict(data or {})
        self.saves = 0

    def load(self) -> dict[str, str]:
        return dict(self.data)

    def save(self, data) -> None:
        self.saves += 1
        self.data = dict(data)

    def delete(self) -> bool:
        had = bool(self.data)
        self.data = {}
        return had
