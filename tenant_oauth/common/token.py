from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional, Tuple

import jwt

from tenant_oauth.common.exceptions import TokenValidationError
from tenant_oauth.core.config import settings


class JWTService:
    """
    Signs and verifies the stateless access tokens handed to clients.

    The token only proves who issued it and until when it is valid;
    revocation is tracked on the issuance record keyed by `jti`.
    """

    SECRET: str = settings.JWT_SECRET
    ISSUER: str = settings.ISSUER
    ALGORITHM: str = settings.JWT_ALGORITHM

    DEFAULT_ACCESS_TTL: int = settings.ACCESS_TOKEN_TTL

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _utc_now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _to_timestamp(dt: datetime) -> int:
        return int(dt.timestamp())

    def _encode_token(
        self,
        payload: Dict[str, Any],
        token_type: str,
        ttl_seconds: int,
        issued_at: Optional[int] = None,
    ) -> Tuple[str, int]:
        """
        Encode and sign a JWT.

        Args:
            payload: Claims to embed in the token.
            token_type: Token type identifier ("access").
            ttl_seconds: Token lifetime in seconds.
            issued_at: UNIX timestamp to use as `iat`, defaults to the current time.

        Returns:
            The signed JWT string and its `exp` timestamp.
        """
        now: datetime = (
            datetime.fromtimestamp(issued_at, timezone.utc)
            if issued_at is not None
            else self._utc_now()
        )
        expires_at = self._to_timestamp(now + timedelta(seconds=ttl_seconds))

        claims: Dict[str, Any] = {
            **payload,
            "iss": self.ISSUER,
            "iat": self._to_timestamp(now),
            "exp": expires_at,
            "typ": token_type,
        }

        token = jwt.encode(
            claims,
            self.SECRET,
            algorithm=self.ALGORITHM,
        )
        return token, expires_at

    def _decode_token(
        self,
        token: str,
        expected_type: str,
        verify_exp: bool = True,
    ) -> Dict[str, Any]:
        """
        Decode and verify a JWT.

        Raises:
            jwt.InvalidTokenError: If the token is malformed, expired or forged.
            ValueError: If the token type does not match the expected type.
        """
        claims: Dict[str, Any] = jwt.decode(
            token,
            self.SECRET,
            algorithms=[self.ALGORITHM],
            issuer=self.ISSUER,
            options={
                "require": ["exp", "iat", "typ", "jti", "sub"],
                "verify_exp": verify_exp,
            },
        )

        if claims.get("typ") != expected_type:
            raise ValueError("Invalid token type")

        return claims

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_access_token(
        self,
        *,
        jti: str,
        subject: str,
        client_id: str,
        tenant_id: str,
        scopes: List[str],
        expires_in: Optional[int] = None,
        issued_at: Optional[int] = None,
    ) -> Tuple[str, int]:
        """
        Generate a signed access token.

        Pass `issued_at` when the caller already stamped the issuance, so
        that `exp - issued_at` is exactly the lifetime.

        Returns:
            The token and its expiry as a UNIX timestamp.
        """
        ttl: int = expires_in if expires_in is not None else self.DEFAULT_ACCESS_TTL

        return self._encode_token(
            payload={
                "jti": jti,
                "sub": subject,
                "client_id": client_id,
                "tenant_id": tenant_id,
                "scope": " ".join(scopes),
            },
            token_type="access",
            ttl_seconds=ttl,
            issued_at=issued_at,
        )

    def verify_access_token(self, token: str, verify_exp: bool = True) -> Dict[str, Any]:
        """
        Verify an access token and return its claims.

        `verify_exp=False` is for revocation, where an expired token should
        still be identified.
        """
        try:
            return self._decode_token(token, expected_type="access", verify_exp=verify_exp)
        except jwt.ExpiredSignatureError:
            raise TokenValidationError("Access token expired")
        except jwt.InvalidTokenError:
            raise TokenValidationError("Invalid access token")
        except ValueError as e:
            raise TokenValidationError(str(e))
