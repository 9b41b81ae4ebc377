import time

import jwt
import pytest
from conftest import AUDIENCE, DOMAIN, StaticFetcher

import tenant_auth as m


def _options(**kwargs) -> m.JWTVerifyOptions:
    kwargs.setdefault("audience", AUDIENCE)
    return m.JWTVerifyOptions(**kwargs)


class TestVerifyToken:
    def test_valid_token_returns_input_claims(self, rsa_key, make_key_set):
        payload = {
            "iss": f"{DOMAIN}/",
            "sub": "auth0|abc",
            "aud": [AUDIENCE, f"{DOMAIN}/userinfo"],
            "iat": 1_700_000_000,
            "exp": 1_700_003_600,
            "azp": "cli-client",
            "scope": "openid profile email",
        }
        token = jwt.encode(payload, rsa_key, algorithm="RS256", headers={"kid": "kid1"})

        claims = m.verify_token(
            token, make_key_set((rsa_key, "kid1")), _options(), now=1_700_000_100
        )

        assert dict(claims.raw) == payload
        assert claims.subject == "auth0|abc"
        assert claims.issuer == f"{DOMAIN}/"
        assert claims.audience == (AUDIENCE, f"{DOMAIN}/userinfo")
        assert claims.issued_at == 1_700_000_000
        assert claims.expires_at == 1_700_003_600
        assert claims.authorized_party == "cli-client"
        assert claims.scopes == frozenset({"openid", "profile", "email"})

    def test_raw_claims_are_read_only(self, rsa_key, make_key_set, make_token):
        claims = m.verify_token(make_token(), make_key_set((rsa_key, "kid1")), _options())

        with pytest.raises(TypeError):
            claims.raw["sub"] = "someone-else"  # type: ignore[index]

    def test_expired_one_second_ago(self, rsa_key, make_key_set, make_token):
        now = int(time.time())
        token = make_token(exp=now - 1)

        with pytest.raises(m.Expired):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options(), now=now)

    def test_expiry_equal_to_now_is_expired(self, rsa_key, make_key_set, make_token):
        token = make_token(exp=1000)

        with pytest.raises(m.Expired):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options(), now=1000)

    def test_leeway_extends_expiry(self, rsa_key, make_key_set, make_token):
        token = make_token(exp=1000)
        key_set = make_key_set((rsa_key, "kid1"))

        claims = m.verify_token(token, key_set, _options(leeway=5), now=1004)
        assert claims.expires_at == 1000

        with pytest.raises(m.Expired):
            m.verify_token(token, key_set, _options(leeway=5), now=1005)

    def test_audience_mismatch(self, rsa_key, make_key_set, make_token):
        token = make_token(aud="https://other-api.example.com/")

        with pytest.raises(m.AudienceMismatch):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options())

    def test_missing_audience_is_mismatch(self, rsa_key, make_key_set, make_token):
        token = make_token(aud=None)

        with pytest.raises(m.AudienceMismatch):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options())

    def test_audience_checked_before_expiry(self, rsa_key, make_key_set, make_token):
        token = make_token(aud="https://other-api.example.com/", exp=1)

        with pytest.raises(m.AudienceMismatch):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options())

    def test_bad_signature(self, rsa_key, other_rsa_key, make_key_set, make_token):
        token = make_token(key=other_rsa_key, kid="kid1")

        with pytest.raises(m.BadSignature):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options())

    def test_disallowed_algorithm_is_bad_signature(self, rsa_key, make_key_set, make_token):
        with pytest.raises(m.BadSignature):
            m.verify_token(
                make_token(),
                make_key_set((rsa_key, "kid1")),
                _options(algorithms=("ES256",)),
            )

    def test_unknown_kid(self, rsa_key, make_key_set, make_token):
        token = make_token(kid="rotated")

        with pytest.raises(m.UnknownKey):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options())

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "a.b.c"])
    def test_malformed_token(self, rsa_key, make_key_set, token):
        with pytest.raises(m.MalformedToken):
            m.verify_token(token, make_key_set((rsa_key, "kid1")), _options())

    def test_missing_kid_is_malformed(self, rsa_key, make_key_set, make_token):
        with pytest.raises(m.MalformedToken):
            m.verify_token(make_token(kid=None), make_key_set((rsa_key, "kid1")), _options())

    def test_missing_exp_is_malformed(self, rsa_key, make_key_set, make_token):
        with pytest.raises(m.MalformedToken):
            m.verify_token(make_token(exp=None), make_key_set((rsa_key, "kid1")), _options())

    @pytest.mark.parametrize("iat", ["yesterday", [1], 1.5, True])
    def test_non_integer_iat_is_malformed(self, rsa_key, make_key_set, make_token, iat):
        with pytest.raises(m.MalformedToken, match="iat"):
            m.verify_token(make_token(iat=iat), make_key_set((rsa_key, "kid1")), _options())

    def test_missing_iat_defaults_to_zero(self, rsa_key, make_key_set, make_token):
        claims = m.verify_token(
            make_token(iat=None), make_key_set((rsa_key, "kid1")), _options()
        )
        assert claims.issued_at == 0

    def test_missing_sub_is_malformed(self, rsa_key, make_key_set, make_token):
        with pytest.raises(m.MalformedToken):
            m.verify_token(make_token(sub=None), make_key_set((rsa_key, "kid1")), _options())

    def test_issuer_checked_only_when_configured(self, rsa_key, make_key_set, make_token):
        token = make_token(iss="https://evil.example.com/")
        key_set = make_key_set((rsa_key, "kid1"))

        assert m.verify_token(token, key_set, _options()).issuer == "https://evil.example.com/"

        with pytest.raises(m.InvalidToken) as exc_info:
            m.verify_token(token, key_set, _options(issuer=f"{DOMAIN}/"))
        assert type(exc_info.value) is m.InvalidToken

    def test_all_token_failures_share_one_description(self):
        for error in (m.MalformedToken, m.UnknownKey, m.BadSignature, m.AudienceMismatch):
            assert error.description == m.InvalidToken.description
            assert error.error_code == 401


class TestJWTVerifier:
    def test_second_verification_uses_cached_key_set(self, rsa_key, make_key_set, make_token):
        fetcher = StaticFetcher(make_key_set((rsa_key, "kid1")))
        verifier = m.JWTVerifier(DOMAIN, m.KeySetCache(fetcher), _options())

        verifier.verify(make_token(sub="user-1"))
        verifier.verify(make_token(sub="user-2"))

        assert fetcher.calls == [DOMAIN]

    def test_unknown_kid_refetches_exactly_once(self, rsa_key, make_key_set, make_token):
        fetcher = StaticFetcher(make_key_set((rsa_key, "kid1")))
        verifier = m.JWTVerifier(DOMAIN, m.KeySetCache(fetcher), _options())

        with pytest.raises(m.UnknownKey):
            verifier.verify(make_token(kid="never-published"))

        assert len(fetcher.calls) == 2

    def test_key_rotation_is_picked_up_after_refetch(
        self, rsa_key, other_rsa_key, make_key_set, make_token
    ):
        fetcher = StaticFetcher(
            make_key_set((rsa_key, "kid1")),
            make_key_set((rsa_key, "kid1"), (other_rsa_key, "kid2")),
        )
        verifier = m.JWTVerifier(DOMAIN, m.KeySetCache(fetcher), _options())
        token = make_token(key=other_rsa_key, kid="kid2")

        assert verifier.verify(token).subject == "user-1"
        assert verifier.verify(token).subject == "user-1"
        assert len(fetcher.calls) == 2

    def test_other_failures_do_not_refetch(self, rsa_key, make_key_set, make_token):
        fetcher = StaticFetcher(make_key_set((rsa_key, "kid1")))
        verifier = m.JWTVerifier(DOMAIN, m.KeySetCache(fetcher), _options())

        with pytest.raises(m.Expired):
            verifier.verify(make_token(exp=int(time.time()) - 10))
        with pytest.raises(m.AudienceMismatch):
            verifier.verify(make_token(aud="nope"))

        assert len(fetcher.calls) == 1

    def test_fetch_failure_propagates(self, make_token):
        class FailingFetcher:
            def fetch(self, domain: str):
                raise m.FetchFailed("connection refused")

        verifier = m.JWTVerifier(DOMAIN, m.KeySetCache(FailingFetcher()), _options())

        with pytest.raises(m.FetchFailed):
            verifier.verify(make_token())
