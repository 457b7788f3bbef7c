"""
Credential utilities: client-secret hashing, opaque token generation and
PKCE (RFC 7636) verification.
"""

import base64
import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from functools import lru_cache

import bcrypt

from tenant_oauth.core.config import settings

MIN_TOKEN_BYTES = 32


# ---------------------------------------------------------------------------
# Secret hashing
# ---------------------------------------------------------------------------

class SecretHasher(ABC):
    """Hashes client secrets for storage and verifies presented secrets."""

    @abstractmethod
    def hash(self, secret: str) -> str:
        ...

    @abstractmethod
    def verify(self, secret: str, secret_hash: str) -> bool:
        """Return True if `secret` matches `secret_hash`. Never raises."""


class BcryptSecretHasher(SecretHasher):
    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, secret: str) -> str:
        # bcrypt only looks at the first 72 bytes
        secret_bytes = secret.encode("utf-8")[:72]
        return bcrypt.hashpw(secret_bytes, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, secret_hash: str) -> bool:
        if not secret or not secret_hash:
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8")[:72], secret_hash.encode("utf-8"))
        except ValueError:
            return False


class Sha256SecretHasher(SecretHasher):
    """Salted SHA-256. Fast, for tests and local development only."""

    PREFIX = "sha256"

    def hash(self, secret: str) -> str:
        salt = secrets.token_hex(16)
        digest = hashlib.sha256(f"{salt}{secret}".encode("utf-8")).hexdigest()
        return f"{self.PREFIX}${salt}${digest}"

    def verify(self, secret: str, secret_hash: str) -> bool:
        if not secret or not secret_hash:
            return False
        try:
            prefix, salt, expected = secret_hash.split("$", 2)
        except ValueError:
            return False
        if prefix != self.PREFIX:
            return False
        digest = hashlib.sha256(f"{salt}{secret}".encode("utf-8")).hexdigest()
        return hmac.compare_digest(digest, expected)


@lru_cache
def get_secret_hasher() -> SecretHasher:
    if settings.SECRET_HASHER == "bcrypt":
        return BcryptSecretHasher(rounds=settings.BCRYPT_ROUNDS)
    if settings.SECRET_HASHER == "sha256":
        return Sha256SecretHasher()
    raise ValueError(f"Unknown SECRET_HASHER: {settings.SECRET_HASHER}")


@lru_cache
def dummy_secret_hash() -> str:
    """A hash to verify against when the client does not exist."""
    return get_secret_hasher().hash(secrets.token_urlsafe(MIN_TOKEN_BYTES))


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------

def generate_opaque_token(byte_length: int = MIN_TOKEN_BYTES) -> str:
    """
    Generate a base64url token from the OS CSPRNG.

    Authorization codes and refresh tokens need at least 256 bits.
    """
    if byte_length < MIN_TOKEN_BYTES:
        raise ValueError(f"byte_length must be at least {MIN_TOKEN_BYTES}")
    return secrets.token_urlsafe(byte_length)


def hash_token(token: str) -> str:
    """Storage key for codes and refresh tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------------

def compute_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def verify_pkce(code_verifier: str, code_challenge: str, method: str) -> bool:
    """
    Check a code_verifier against the stored challenge.

    Unknown methods fail closed.
    """
    if not code_verifier or not code_challenge:
        return False

    if method == "S256":
        try:
            expected = compute_challenge(code_verifier)
        except UnicodeEncodeError:
            return False
    elif method == "plain":
        expected = code_verifier
    else:
        return False

    return hmac.compare_digest(expected.encode("utf-8"), code_challenge.encode("utf-8"))
