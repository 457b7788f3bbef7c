"""
Token revocation (RFC 7009) and introspection (RFC 7662).

Neither operation tells the caller whether a token existed: revocation
always succeeds and introspection degrades to ``{"active": false}``.
"""

import time
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.common.exceptions import OAuthException, TokenValidationError
from tenant_oauth.common.security import hash_token
from tenant_oauth.common.token import JWTService
from tenant_oauth.models.dto.oauth_models import IntrospectionResponse
from tenant_oauth.models.persistance.oauth import OAuthAccessToken
from tenant_oauth.repositories import application_repo, token_repo
from tenant_oauth.services.collaborators import FeatureFlags

ACCESS_TOKEN_HINT = "access_token"
REFRESH_TOKEN_HINT = "refresh_token"

INACTIVE = IntrospectionResponse(active=False)


async def _find_by_access_token(
    db: AsyncSession,
    token: str,
    verify_exp: bool,
) -> Optional[OAuthAccessToken]:
    try:
        claims = JWTService().verify_access_token(token, verify_exp=verify_exp)
    except TokenValidationError:
        return None
    return await token_repo.get_token_by_jti(db, claims["jti"])


async def _find_by_refresh_token(
    db: AsyncSession,
    token: str,
) -> Optional[OAuthAccessToken]:
    return await token_repo.get_token_by_refresh_hash(db, hash_token(token))


async def revoke(
    db: AsyncSession,
    token: Optional[str],
    token_type_hint: Optional[str] = None,
) -> dict:
    if not token:
        raise OAuthException(error="invalid_request", description="Missing token")

    # the hint only changes lookup order
    if token_type_hint == REFRESH_TOKEN_HINT:
        record = await _find_by_refresh_token(db, token)
        if record is None:
            record = await _find_by_access_token(db, token, verify_exp=False)
    else:
        record = await _find_by_access_token(db, token, verify_exp=False)
        if record is None:
            record = await _find_by_refresh_token(db, token)

    if record is not None:
        now = int(time.time())
        flipped = await token_repo.revoke_token_record(db, record.id, now)
        # access tokens minted from this refresh token die with it
        children = 0
        if record.refresh_token_hash:
            children = await token_repo.revoke_child_records(db, record.id, now)
        await db.commit()
        if flipped or children:
            logger.info(
                "token_revoked: record={} children={} hint={}",
                record.id,
                children,
                token_type_hint or "-",
            )

    return {"success": True}


async def introspect(
    db: AsyncSession,
    flags: FeatureFlags,
    token: Optional[str],
) -> IntrospectionResponse:
    if not token:
        return INACTIVE

    now = int(time.time())
    token_type = ACCESS_TOKEN_HINT
    record = await _find_by_access_token(db, token, verify_exp=True)
    expires_at = record.expires_at if record else None

    if record is None:
        token_type = REFRESH_TOKEN_HINT
        record = await _find_by_refresh_token(db, token)
        expires_at = record.refresh_token_expires_at if record else None

    if record is None or record.is_revoked or not expires_at or now >= expires_at:
        return INACTIVE

    application = await application_repo.get_application_by_id(db, record.application_id)
    if not application or not application.is_active:
        return INACTIVE

    if not await flags.is_oauth_enabled(application.tenant_id):
        return INACTIVE

    return IntrospectionResponse(
        active=True,
        scope=" ".join(record.scopes),
        client_id=application.client_id,
        sub=record.subject_id,
        tenant_id=application.tenant_id,
        exp=expires_at,
        iat=record.created_at,
        token_type=token_type,
    )
