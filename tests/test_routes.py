# End-to-end flows through the HTTP surface.

import pytest

from tenant_oauth.core.config import settings
from tenant_oauth.core.db import get_session

from conftest import REDIRECT_URI, make_pkce_pair, query_params

USER_HEADERS = {"X-User-Id": "user-1"}


class TestMetadata:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_authorization_server_metadata(self, client):
        resp = await client.get("/.well-known/oauth-authorization-server")

        assert resp.status_code == 200
        body = resp.json()
        assert body["issuer"] == "https://auth.example.com"
        assert body["authorization_endpoint"] == "https://auth.example.com/authorize"
        assert body["token_endpoint"] == "https://auth.example.com/token"
        assert body["revocation_endpoint"] == "https://auth.example.com/revoke"
        assert body["introspection_endpoint"] == "https://auth.example.com/introspect"
        assert body["response_types_supported"] == ["code"]
        assert "S256" in body["code_challenge_methods_supported"]
        assert "client_secret_basic" in body["token_endpoint_auth_methods_supported"]
        assert body["revocation_endpoint_auth_methods_supported"] == ["none"]
        assert body["introspection_endpoint_auth_methods_supported"] == ["none"]

    @pytest.mark.asyncio
    async def test_metadata_follows_settings(self, client, monkeypatch):
        monkeypatch.setattr(
            settings, "REVOCATION_ENDPOINT_AUTH_METHODS_SUPPORTED", ["client_secret_basic"]
        )
        monkeypatch.setattr(
            settings, "INTROSPECTION_ENDPOINT_AUTH_METHODS_SUPPORTED", ["client_secret_post"]
        )

        body = (await client.get("/.well-known/oauth-authorization-server")).json()

        assert body["revocation_endpoint_auth_methods_supported"] == ["client_secret_basic"]
        assert body["introspection_endpoint_auth_methods_supported"] == ["client_secret_post"]


class TestRequestContext:
    @pytest.mark.asyncio
    async def test_request_id_generated(self, client):
        resp = await client.get("/health")
        assert resp.headers["x-request-id"]

    @pytest.mark.asyncio
    async def test_request_id_propagated(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["x-request-id"] == "req-123"

    @pytest.mark.asyncio
    async def test_unhandled_error(self, client, test_app):
        async def _broken_session():
            raise RuntimeError("database unavailable")
            yield

        test_app.dependency_overrides[get_session] = _broken_session

        resp = await client.post("/revoke", data={"token": "anything"})

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "server_error",
            "error_description": "Internal server error",
        }


class TestAuthorizationCodeFlow:
    @pytest.mark.asyncio
    async def test_deny_then_approve_then_exchange(self, client, register_app):
        application, client_secret = await register_app()
        verifier, challenge = make_pkce_pair()
        request = {
            "response_type": "code",
            "client_id": application.client_id,
            "redirect_uri": REDIRECT_URI,
            "scope": "orders:read products:read",
            "state": "abc123",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }

        # consent screen
        resp = await client.get("/authorize", params=request, headers=USER_HEADERS)
        assert resp.status_code == 200
        consent = resp.json()
        assert consent["requested_scopes"] == ["orders:read", "products:read"]

        form = dict(request)

        # user says no
        resp = await client.post(
            "/authorize/consent", data={**form, "approved": "false"}, headers=USER_HEADERS
        )
        denied = query_params(resp.headers["location"])
        assert denied == {
            "error": "access_denied",
            "error_description": "The user denied the request",
            "state": "abc123",
        }

        # user says yes
        resp = await client.post(
            "/authorize/consent", data={**form, "approved": "true"}, headers=USER_HEADERS
        )
        assert resp.status_code == 302
        approved = query_params(resp.headers["location"])
        assert approved["state"] == "abc123"
        code = approved["code"]

        token_form = {
            "grant_type": "authorization_code",
            "client_id": application.client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": REDIRECT_URI,
            "code_verifier": verifier,
        }
        resp = await client.post("/token", data=token_form)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["pragma"] == "no-cache"
        tokens = resp.json()
        assert set(tokens) == {"access_token", "token_type", "expires_in", "refresh_token", "scope"}
        assert tokens["scope"] == "orders:read products:read"

        # replay
        resp = await client.post("/token", data=token_form)
        assert resp.status_code == 400
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["error"] == "invalid_grant"

        # the issued token is live until revoked
        resp = await client.post("/introspect", data={"token": tokens["access_token"]})
        assert resp.json()["active"] is True
        assert resp.json()["scope"] == "orders:read products:read"

        resp = await client.post("/revoke", data={"token": tokens["access_token"]})
        assert resp.json() == {"success": True}

        resp = await client.post("/introspect", data={"token": tokens["access_token"]})
        assert resp.json() == {"active": False}

    @pytest.mark.asyncio
    async def test_refresh_over_http(self, client, register_app, issue_code):
        application, client_secret = await register_app()
        code = await issue_code(application)

        resp = await client.post(
            "/token",
            data={
                "grant_type": "authorization_code",
                "client_id": application.client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": REDIRECT_URI,
            },
        )
        refresh_token = resp.json()["refresh_token"]

        resp = await client.post(
            "/token",
            data={
                "grant_type": "refresh_token",
                "client_id": application.client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "scope": "orders:read",
            },
        )

        assert resp.status_code == 200
        assert resp.json()["scope"] == "orders:read"
        assert resp.json()["refresh_token"] != refresh_token

    @pytest.mark.asyncio
    async def test_invalid_client_over_http(self, client, register_app, issue_code):
        application, _ = await register_app()

        resp = await client.post(
            "/token",
            data={
                "grant_type": "authorization_code",
                "client_id": application.client_id,
                "client_secret": "wrong",
                "code": await issue_code(application),
                "redirect_uri": REDIRECT_URI,
            },
        )

        assert resp.status_code == 401
        assert resp.headers["www-authenticate"].startswith("Basic")
        assert resp.json()["error"] == "invalid_client"
