"""Token signing and verification."""
from datetime import timedelta

import pytest
from jose import jwt
from pydantic import ValidationError

from app.core.exceptions import TokenExpired, TokenInvalid
from app.core.jwt import TokenIssuer, AccessClaims, RefreshClaims, ACCESS, REFRESH
from tests.conftest import make_config


IDENTITY = {"sub": "8f0e1f5c-0000-4000-8000-000000000001", "email": "a@x.com", "role": "user"}


class TestTokenIssuer:
    """Access and refresh tokens are independent families with clock-based expiry."""

    def test_access_token_carries_identity(self, issuer, clock):
        token = issuer.sign_access(IDENTITY)
        claims = issuer.verify(token, ACCESS)

        assert isinstance(claims, AccessClaims)
        assert claims.subject == IDENTITY["sub"]
        assert claims.email == "a@x.com"
        assert claims.role == "user"
        assert claims.issued_at == clock.now()
        assert claims.expires_at == clock.now() + timedelta(minutes=15)

    def test_refresh_token_requires_token_id(self, issuer):
        with pytest.raises(ValueError):
            issuer.sign_refresh({"sub": IDENTITY["sub"]})

        claims = issuer.verify(issuer.sign_refresh({"sub": IDENTITY["sub"], "jti": "abc"}), REFRESH)
        assert isinstance(claims, RefreshClaims)
        assert claims.token_id == "abc"

    def test_families_do_not_cross_verify(self, issuer):
        access = issuer.sign_access(IDENTITY)
        refresh = issuer.sign_refresh({"sub": IDENTITY["sub"], "jti": "abc"})

        with pytest.raises(TokenInvalid):
            issuer.verify(refresh, ACCESS)
        with pytest.raises(TokenInvalid):
            issuer.verify(access, REFRESH)

    def test_type_claim_is_checked_even_with_the_right_secret(self, auth_config, issuer):
        forged = jwt.encode(
            {**IDENTITY, "type": "refresh", "iat": 0, "exp": 4102444800},
            auth_config.access_secret,
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalid):
            issuer.verify(forged, ACCESS)

    def test_expiry_follows_the_clock(self, issuer, clock):
        token = issuer.sign_access(IDENTITY, ttl=timedelta(minutes=1))
        clock.advance(seconds=59)
        issuer.verify(token, ACCESS)

        clock.advance(seconds=1)
        with pytest.raises(TokenExpired) as exc_info:
            issuer.verify(token, ACCESS)
        assert exc_info.value.code == "token_expired"
        assert exc_info.value.status_code == 401

    def test_expired_refresh_token_can_be_read_without_expiry_check(self, issuer, clock):
        token = issuer.sign_refresh({"sub": IDENTITY["sub"], "jti": "abc"}, ttl=timedelta(seconds=10))
        clock.advance(minutes=5)

        with pytest.raises(TokenExpired):
            issuer.verify(token, REFRESH)
        assert issuer.verify(token, REFRESH, verify_exp=False).token_id == "abc"

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
    def test_malformed_input_is_invalid(self, issuer, token):
        with pytest.raises(TokenInvalid):
            issuer.verify(token, ACCESS)

    def test_tampered_signature_is_invalid(self, issuer, clock):
        token = issuer.sign_access(IDENTITY)
        other = TokenIssuer(make_config(access_secret="another-access-secret-0123456789abcdef"), clock)

        with pytest.raises(TokenInvalid):
            other.verify(token, ACCESS)

    def test_session_id_round_trips(self, issuer):
        claims = issuer.verify(issuer.sign_access({**IDENTITY, "sid": "s-1"}), ACCESS)
        assert claims.session_id == "s-1"
        assert claims.identity()["sid"] == "s-1"


class TestAuthConfig:

    def test_secrets_must_differ(self):
        with pytest.raises(ValidationError):
            make_config(refresh_secret="access-secret-for-tests-0123456789abcdef")

    def test_config_is_immutable(self, auth_config):
        with pytest.raises(ValidationError):
            auth_config.refresh_threshold_seconds = 5
