# Shared fixtures for the authorization server tests.
#
# Settings are read once at import time, so the environment has to be in
# place before anything from tenant_oauth is imported.

import os

os.environ["JWT_SECRET"] = "test-signing-secret-with-enough-entropy-0123456789"
os.environ["SECRET_HASHER"] = "sha256"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PUBLIC_URL"] = "https://auth.example.com"

import base64
import hashlib
import secrets
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tenant_oauth.core.db import Base, get_session
from tenant_oauth.models.dto.oauth_models import ApplicationCreateRequest, GrantType, TokenRequest
from tenant_oauth.models.persistance import oauth  # noqa: F401
from tenant_oauth.services.collaborators import StaticFeatureFlags, get_feature_flags
from tenant_oauth.services.oauth import application_services, authorization_services, token_services

TENANT_ID = "tenant-a"
REDIRECT_URI = "https://client.example.com/callback"
SCOPES = ["orders:read", "products:read"]


def make_pkce_pair(method: str = "S256"):
    """Generate a PKCE code_verifier and code_challenge pair."""
    verifier = secrets.token_urlsafe(48)
    if method == "plain":
        return verifier, verifier
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


def query_params(location: str) -> dict:
    """Flatten the query string of a redirect Location header."""
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


@pytest_asyncio.fixture
async def engine(tmp_path):
    # file backed so concurrent sessions really use separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'oauth.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def flags():
    return StaticFeatureFlags(["*"])


@pytest.fixture
def test_app(session_factory, flags):
    from tenant_oauth.main import app

    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_feature_flags] = lambda: flags
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def register_app(session_factory, flags):
    """Register an application through the registry service."""

    async def _register(tenant_id: str = TENANT_ID, **overrides):
        fields = {
            "name": "Storefront Sync",
            "redirect_uris": [REDIRECT_URI],
            "allowed_scopes": list(SCOPES),
            **overrides,
        }
        async with session_factory() as db:
            return await application_services.register_application(
                db, tenant_id, ApplicationCreateRequest(**fields), flags
            )

    return _register


@pytest.fixture
def issue_code(session_factory):
    """Issue an authorization code for an already validated request."""

    async def _issue(
        application,
        *,
        subject_id: str = "user-1",
        scopes=None,
        redirect_uri: str = REDIRECT_URI,
        code_challenge=None,
        code_challenge_method=None,
    ) -> str:
        validated = authorization_services.ValidatedAuthorization(
            application=application,
            redirect_uri=redirect_uri,
            scopes=list(scopes or application.allowed_scopes),
            state=None,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        async with session_factory() as db:
            response = await authorization_services.issue_authorization_code(
                db, validated, subject_id, validated.scopes
            )
        return query_params(response.headers["location"])["code"]

    return _issue


@pytest.fixture
def exchange(session_factory, flags):
    """Run a token request in its own session, like a separate HTTP request."""

    async def _exchange(grant_type: GrantType = GrantType.AUTHORIZATION_CODE, **fields):
        async with session_factory() as db:
            return await token_services.issue_token(
                db, flags, TokenRequest(grant_type=grant_type, **fields)
            )

    return _exchange
