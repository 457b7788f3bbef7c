# Tests for the access-token signer.

import time

import jwt
import pytest

from tenant_oauth.common.exceptions import TokenValidationError
from tenant_oauth.common.token import JWTService


def _issue(**overrides):
    fields = {
        "jti": "jti-1",
        "subject": "user-1",
        "client_id": "oauth_abc",
        "tenant_id": "tenant-a",
        "scopes": ["orders:read", "products:read"],
    }
    fields.update(overrides)
    return JWTService().generate_access_token(**fields)


class TestJWTService:
    def test_claims_round_trip(self):
        token, exp = _issue()
        claims = JWTService().verify_access_token(token)

        assert claims["jti"] == "jti-1"
        assert claims["sub"] == "user-1"
        assert claims["client_id"] == "oauth_abc"
        assert claims["tenant_id"] == "tenant-a"
        assert claims["scope"] == "orders:read products:read"
        assert claims["iss"] == "https://auth.example.com"
        assert claims["typ"] == "access"
        assert claims["exp"] == exp
        assert exp - claims["iat"] == JWTService.DEFAULT_ACCESS_TTL

    def test_issued_at_pins_iat_and_exp(self):
        issued_at = int(time.time()) - 5
        token, exp = _issue(issued_at=issued_at)
        claims = JWTService().verify_access_token(token)

        assert claims["iat"] == issued_at
        assert exp == issued_at + JWTService.DEFAULT_ACCESS_TTL

    def test_expired_token(self):
        token, _ = _issue(expires_in=-10)
        with pytest.raises(TokenValidationError, match="expired"):
            JWTService().verify_access_token(token)

    def test_expired_token_can_still_be_identified(self):
        token, _ = _issue(expires_in=-10)
        claims = JWTService().verify_access_token(token, verify_exp=False)
        assert claims["jti"] == "jti-1"

    def test_forged_signature(self):
        token, _ = _issue()
        claims = jwt.decode(token, options={"verify_signature": False})
        forged = jwt.encode(claims, "someone-elses-secret", algorithm="HS256")
        with pytest.raises(TokenValidationError):
            JWTService().verify_access_token(forged)

    def test_wrong_issuer(self):
        token, _ = _issue()
        claims = jwt.decode(token, options={"verify_signature": False})
        claims["iss"] = "https://other.example.com"
        token = jwt.encode(claims, JWTService.SECRET, algorithm="HS256")
        with pytest.raises(TokenValidationError):
            JWTService().verify_access_token(token)

    def test_wrong_token_type(self):
        token, _ = _issue()
        claims = jwt.decode(token, options={"verify_signature": False})
        claims["typ"] = "refresh"
        token = jwt.encode(claims, JWTService.SECRET, algorithm="HS256")
        with pytest.raises(TokenValidationError, match="type"):
            JWTService().verify_access_token(token)

    def test_garbage(self):
        with pytest.raises(TokenValidationError):
            JWTService().verify_access_token("not-a-jwt")
