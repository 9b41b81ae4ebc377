"""
Tests for the AuthExtension Flask integration.

Tests the decorator-based token verification, identity resolution and the
HTTP status mapping of every failure.
"""

from flask import Flask, g
from conftest import AUDIENCE, DOMAIN, StaticFetcher

import tenant_auth as m


class OkVerifier:
    """Mock TokenVerifier that accepts 'GOOD' tokens and fails others with a chosen error."""

    def __init__(self, error: Exception | None = None):
        self._error = error or m.InvalidToken("Invalid token")

    def verify(self, token: str) -> m.VerifiedClaims:
        if token != "GOOD":
            raise self._error
        return m.VerifiedClaims._from_payload(
            {"sub": "auth0|alice", "aud": AUDIENCE, "exp": 2_000_000_000}
        )


class StubUserInfo:
    def __init__(self, error: Exception | None = None):
        self._error = error

    def fetch(self, token: str) -> m.UserInfo:
        if self._error is not None:
            raise self._error
        return m.UserInfo(sub="auth0|alice", name="Alice", email="alice@example.com")


def _resolver(user_info=None, store=None) -> m.IdentityResolver:
    return m.IdentityResolver(
        store or m.InMemoryUserStore(),
        user_info or StubUserInfo(),
        m.IdentityCache(),
        tenant_id_factory=lambda: "tenant-1",
    )


def _protected(app: Flask, auth: m.AuthExtension) -> None:
    @app.get("/me")
    @auth.require()
    def me():  # type: ignore
        ctx = m.current_user_context()
        return {"tenant": ctx.tenant_id, "user": ctx.user_id, "sub": g.claims.subject}


class TestAuthExtensionBasics:
    """Test basic AuthExtension functionality."""

    def test_init_app_registers_extension(self, app: Flask):
        auth = m.AuthExtension(verifier=OkVerifier(), resolver=_resolver())
        auth.init_app(app)

        assert app.extensions["tenant_auth"] is auth

    def test_missing_token_returns_401(self, app: Flask):
        auth = m.AuthExtension(verifier=OkVerifier(), resolver=_resolver())
        _protected(app, auth)

        r = app.test_client().get("/me")
        assert r.status_code == 401
        assert "Missing token" in r.get_data(as_text=True)

    def test_invalid_token_returns_401(self, app: Flask):
        auth = m.AuthExtension(verifier=OkVerifier(), resolver=_resolver())
        _protected(app, auth)

        r = app.test_client().get("/me", headers={"Authorization": "Bearer BAD"})
        assert r.status_code == 401

    def test_bad_signature_and_unknown_key_look_identical(self, app: Flask):
        bodies = []
        for error in (m.BadSignature("sig mismatch"), m.UnknownKey("kid rotated")):
            app = Flask(__name__)
            auth = m.AuthExtension(verifier=OkVerifier(error), resolver=_resolver())
            _protected(app, auth)

            r = app.test_client().get("/me", headers={"Authorization": "Bearer BAD"})
            assert r.status_code == 401
            bodies.append(r.get_data(as_text=True))

        assert bodies[0] == bodies[1]
        assert "kid rotated" not in bodies[1]

    def test_expired_token_returns_401(self, app: Flask):
        auth = m.AuthExtension(verifier=OkVerifier(m.Expired("exp passed")), resolver=_resolver())
        _protected(app, auth)

        r = app.test_client().get("/me", headers={"Authorization": "Bearer OLD"})
        assert r.status_code == 401
        assert "Expired token" in r.get_data(as_text=True)

    def test_unexpected_error_returns_401(self, app: Flask):
        auth = m.AuthExtension(verifier=OkVerifier(RuntimeError("boom")), resolver=_resolver())
        _protected(app, auth)

        r = app.test_client().get("/me", headers={"Authorization": "Bearer BAD"})
        assert r.status_code == 401
        assert "boom" not in r.get_data(as_text=True)

    def test_current_user_context_requires_authentication(self, app: Flask):
        @app.get("/open")
        def open_route():  # type: ignore
            m.current_user_context()
            return {"ok": True}

        r = app.test_client().get("/open")
        assert r.status_code == 401


class TestAuthExtensionResolution:
    def test_sets_g_user_context_and_allows(self, app: Flask):
        auth = m.AuthExtension(verifier=OkVerifier(), resolver=_resolver())
        _protected(app, auth)

        c = app.test_client()
        r1 = c.get("/me", headers={"Authorization": "Bearer GOOD"})
        r2 = c.get("/me", headers={"Authorization": "Bearer GOOD"})

        assert r1.status_code == 200
        assert r1.get_json()["tenant"] == "tenant-1"
        assert r1.get_json()["sub"] == "auth0|alice"
        assert r1.get_json() == r2.get_json()

    def test_provisioning_failure_returns_401(self, app: Flask):
        resolver = _resolver(user_info=StubUserInfo(m.ProvisioningFailed("userinfo 503")))
        auth = m.AuthExtension(verifier=OkVerifier(), resolver=resolver)
        _protected(app, auth)

        r = app.test_client().get("/me", headers={"Authorization": "Bearer GOOD"})
        assert r.status_code == 401

    def test_store_unavailable_returns_401(self, app: Flask):
        class DownStore:
            def find_by_external_id(self, external_id: str):
                raise m.StoreUnavailable("redis down")

            def insert(self, user):
                raise AssertionError("must not provision")

        auth = m.AuthExtension(verifier=OkVerifier(), resolver=_resolver(store=DownStore()))
        _protected(app, auth)

        r = app.test_client().get("/me", headers={"Authorization": "Bearer GOOD"})
        assert r.status_code == 401


class TestOwnership:
    def test_foreign_resource_returns_403(self, app: Flask):
        auth = m.AuthExtension(verifier=OkVerifier(), resolver=_resolver())
        auth.init_app(app)
        m.register_error_handlers(app)

        @app.get("/todos/<tenant_id>")
        @auth.require()
        def todo(tenant_id: str):  # type: ignore
            ctx = m.current_user_context()
            m.require_owner(ctx, tenant_id, ctx.user_id)
            return {"ok": True}

        c = app.test_client()
        headers = {"Authorization": "Bearer GOOD"}

        assert c.get("/todos/tenant-1", headers=headers).status_code == 200

        r = c.get("/todos/tenant-2", headers=headers)
        assert r.status_code == 403
        assert r.get_json() == {"error": "Forbidden"}


def test_end_to_end_with_signed_token(app: Flask, rsa_key, make_key_set, make_token):
    fetcher = StaticFetcher(make_key_set((rsa_key, "kid1")))
    verifier = m.JWTVerifier(
        DOMAIN, m.KeySetCache(fetcher), m.JWTVerifyOptions(audience=AUDIENCE)
    )
    auth = m.AuthExtension(verifier=verifier, resolver=_resolver())
    auth.init_app(app)
    _protected(app, auth)

    c = app.test_client()
    ok = c.get("/me", headers={"Authorization": f"Bearer {make_token(sub='auth0|alice')}"})
    wrong_aud = c.get("/me", headers={"Authorization": f"Bearer {make_token(aud='other')}"})

    assert ok.status_code == 200
    assert ok.get_json()["sub"] == "auth0|alice"
    assert wrong_aud.status_code == 401
    assert len(fetcher.calls) == 1
