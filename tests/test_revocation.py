# Tests for token revocation and introspection.

import time

import pytest
from sqlalchemy import select, update

from tenant_oauth.common.exceptions import OAuthException
from tenant_oauth.common.token import JWTService
from tenant_oauth.core.config import settings
from tenant_oauth.models.dto.oauth_models import ApplicationUpdateRequest, GrantType
from tenant_oauth.models.persistance.oauth import OAuthAccessToken
from tenant_oauth.services.oauth import application_services, revocation_services

from conftest import REDIRECT_URI, SCOPES


@pytest.fixture
def tokens(register_app, issue_code, exchange):
    """Register an application and run one code exchange for it."""

    async def _tokens(**register_overrides):
        application, client_secret = await register_app(**register_overrides)
        result = await exchange(
            client_id=application.client_id,
            client_secret=client_secret,
            code=await issue_code(application, subject_id="user-7"),
            redirect_uri=REDIRECT_URI,
        )
        return application, client_secret, result

    return _tokens


class TestIntrospect:
    @pytest.mark.asyncio
    async def test_active_access_token(self, tokens, session_factory, flags):
        application, _, result = await tokens()

        async with session_factory() as db:
            info = await revocation_services.introspect(db, flags, result.access_token)

        claims = JWTService().verify_access_token(result.access_token)
        assert info.active is True
        assert info.scope == " ".join(SCOPES)
        assert info.client_id == application.client_id
        assert info.sub == "user-7"
        assert info.tenant_id == application.tenant_id
        assert info.exp == claims["exp"]
        assert info.token_type == "access_token"

    @pytest.mark.asyncio
    async def test_active_refresh_token(self, tokens, session_factory, flags):
        application, _, result = await tokens()

        async with session_factory() as db:
            info = await revocation_services.introspect(db, flags, result.refresh_token)

        assert info.active is True
        assert info.token_type == "refresh_token"
        assert info.client_id == application.client_id
        assert info.exp > int(time.time())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    async def test_unknown_tokens_are_inactive(self, session_factory, flags, token):
        async with session_factory() as db:
            info = await revocation_services.introspect(db, flags, token)
        assert info.model_dump(exclude_none=True) == {"active": False}

    @pytest.mark.asyncio
    async def test_expired_access_token(self, tokens, session_factory, flags):
        _, _, result = await tokens()
        claims = JWTService().verify_access_token(result.access_token)
        expired, _ = JWTService().generate_access_token(
            jti=claims["jti"],
            subject=claims["sub"],
            client_id=claims["client_id"],
            tenant_id=claims["tenant_id"],
            scopes=claims["scope"].split(),
            expires_in=-10,
        )

        async with session_factory() as db:
            info = await revocation_services.introspect(db, flags, expired)
        assert info.active is False

    @pytest.mark.asyncio
    async def test_expired_record(self, tokens, session_factory, flags):
        _, _, result = await tokens()

        # the stored expiry wins even if the signature still verifies
        async with session_factory() as db:
            await db.execute(
                update(OAuthAccessToken).values(
                    expires_at=int(time.time()) - 1,
                    refresh_token_expires_at=int(time.time()) - 1,
                )
            )
            await db.commit()

        async with session_factory() as db:
            assert not (await revocation_services.introspect(db, flags, result.access_token)).active
            assert not (await revocation_services.introspect(db, flags, result.refresh_token)).active

    @pytest.mark.asyncio
    async def test_inactive_application(self, tokens, session_factory, flags):
        application, _, result = await tokens()

        async with session_factory() as db:
            await application_services.update_application(
                db,
                application.tenant_id,
                application.client_id,
                ApplicationUpdateRequest(is_active=False),
                flags,
            )

        async with session_factory() as db:
            info = await revocation_services.introspect(db, flags, result.access_token)
        assert info.active is False

    @pytest.mark.asyncio
    async def test_tenant_disabled(self, tokens, session_factory, flags):
        _, _, result = await tokens()
        flags.enabled_tenants = set()

        async with session_factory() as db:
            info = await revocation_services.introspect(db, flags, result.access_token)
        assert info.active is False

    @pytest.mark.asyncio
    async def test_rotated_out_tokens_are_inactive(self, tokens, exchange, session_factory, flags):
        application, client_secret, first = await tokens()
        await exchange(
            GrantType.REFRESH_TOKEN,
            client_id=application.client_id,
            client_secret=client_secret,
            refresh_token=first.refresh_token,
        )

        async with session_factory() as db:
            assert not (await revocation_services.introspect(db, flags, first.access_token)).active
            assert not (await revocation_services.introspect(db, flags, first.refresh_token)).active


class TestRevoke:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("hint", [None, "access_token", "refresh_token"])
    async def test_revoke_access_token(self, tokens, session_factory, flags, hint):
        _, _, result = await tokens()

        async with session_factory() as db:
            assert await revocation_services.revoke(db, result.access_token, hint) == {"success": True}

        async with session_factory() as db:
            assert not (await revocation_services.introspect(db, flags, result.access_token)).active

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hint", [None, "access_token", "refresh_token"])
    async def test_revoke_refresh_token(self, tokens, exchange, session_factory, hint):
        application, client_secret, result = await tokens()

        async with session_factory() as db:
            await revocation_services.revoke(db, result.refresh_token, hint)

        with pytest.raises(OAuthException) as exc:
            await exchange(
                GrantType.REFRESH_TOKEN,
                client_id=application.client_id,
                client_secret=client_secret,
                refresh_token=result.refresh_token,
            )
        assert exc.value.error == "invalid_grant"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hint", [None, "refresh_token"])
    async def test_revoke_refresh_token_revokes_refreshed_access_tokens(
        self, tokens, exchange, session_factory, flags, monkeypatch, hint
    ):
        monkeypatch.setattr(settings, "REFRESH_TOKEN_ROTATION", False)
        application, client_secret, first = await tokens()
        refreshed = [
            await exchange(
                GrantType.REFRESH_TOKEN,
                client_id=application.client_id,
                client_secret=client_secret,
                refresh_token=first.refresh_token,
            )
            for _ in range(2)
        ]

        async with session_factory() as db:
            for result in refreshed:
                assert (await revocation_services.introspect(db, flags, result.access_token)).active

        async with session_factory() as db:
            await revocation_services.revoke(db, first.refresh_token, hint)

        async with session_factory() as db:
            for result in [first, *refreshed]:
                info = await revocation_services.introspect(db, flags, result.access_token)
                assert info.active is False
            rows = (await db.execute(select(OAuthAccessToken))).scalars().all()
        assert len(rows) == 3
        assert all(row.is_revoked and row.revoked_at for row in rows)

    @pytest.mark.asyncio
    async def test_revoke_leaves_other_grants_alone(
        self, tokens, exchange, session_factory, flags, monkeypatch
    ):
        monkeypatch.setattr(settings, "REFRESH_TOKEN_ROTATION", False)
        application, client_secret, first = await tokens()
        refreshed = await exchange(
            GrantType.REFRESH_TOKEN,
            client_id=application.client_id,
            client_secret=client_secret,
            refresh_token=first.refresh_token,
        )
        _, _, other = await tokens()

        async with session_factory() as db:
            await revocation_services.revoke(db, first.refresh_token)

        async with session_factory() as db:
            assert not (await revocation_services.introspect(db, flags, refreshed.access_token)).active
            assert (await revocation_services.introspect(db, flags, other.access_token)).active
            assert (await revocation_services.introspect(db, flags, other.refresh_token)).active

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, tokens, session_factory):
        _, _, result = await tokens()

        for _ in range(3):
            async with session_factory() as db:
                assert await revocation_services.revoke(db, result.access_token) == {"success": True}

    @pytest.mark.asyncio
    async def test_revoke_unknown_token(self, session_factory):
        async with session_factory() as db:
            assert await revocation_services.revoke(db, "no-such-token") == {"success": True}

    @pytest.mark.asyncio
    async def test_revoke_expired_access_token(self, tokens, session_factory, flags):
        _, _, result = await tokens()

        async with session_factory() as db:
            await db.execute(update(OAuthAccessToken).values(expires_at=int(time.time()) - 1))
            await db.commit()

        async with session_factory() as db:
            await revocation_services.revoke(db, result.access_token)

        # the record (and with it the refresh token) is gone for good
        async with session_factory() as db:
            assert not (await revocation_services.introspect(db, flags, result.refresh_token)).active

    @pytest.mark.asyncio
    async def test_missing_token(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(OAuthException) as exc:
                await revocation_services.revoke(db, None)
        assert exc.value.error == "invalid_request"


class TestRoutes:
    @pytest.mark.asyncio
    async def test_introspect_route(self, client, tokens):
        _, _, result = await tokens()

        resp = await client.post("/introspect", data={"token": result.access_token})

        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        body = resp.json()
        assert body["active"] is True
        assert body["sub"] == "user-7"

    @pytest.mark.asyncio
    async def test_introspect_route_inactive_shape(self, client):
        resp = await client.post("/introspect", data={"token": "garbage"})
        assert resp.json() == {"active": False}

    @pytest.mark.asyncio
    async def test_revoke_route(self, client, tokens):
        _, _, result = await tokens()

        resp = await client.post(
            "/revoke", data={"token": result.refresh_token, "token_type_hint": "refresh_token"}
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        resp = await client.post("/introspect", data={"token": result.access_token})
        assert resp.json() == {"active": False}

    @pytest.mark.asyncio
    async def test_revoke_route_missing_token(self, client):
        resp = await client.post("/revoke", data={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"
