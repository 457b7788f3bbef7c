import base64
import binascii
import time
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote_plus

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.common.exceptions import OAuthException
from tenant_oauth.common.security import generate_opaque_token, hash_token, verify_pkce
from tenant_oauth.common.token import JWTService
from tenant_oauth.core.config import settings
from tenant_oauth.models.dto.oauth_models import GrantType, TokenRequest, TokenResponse
from tenant_oauth.models.persistance.oauth import OAuthApplication
from tenant_oauth.repositories import code_repo, token_repo
from tenant_oauth.services.collaborators import FeatureFlags
from tenant_oauth.services.oauth.application_services import authenticate_client
from tenant_oauth.services.oauth.authorization_services import parse_scope

GrantHandler = Callable[[AsyncSession, TokenRequest, OAuthApplication], Awaitable[TokenResponse]]

INVALID_CLIENT_HEADERS = {"WWW-Authenticate": 'Basic realm="oauth"'}

# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------

def parse_grant_type(grant_type: Optional[str]) -> GrantType:
    if not grant_type:
        raise OAuthException(error="invalid_request", description="Missing grant_type")
    try:
        return GrantType(grant_type)
    except ValueError:
        raise OAuthException(
            error="unsupported_grant_type",
            description=f"Unsupported grant_type: {grant_type}",
        )


def parse_basic_auth(authorization: Optional[str]) -> Optional[Tuple[str, str]]:
    """Client credentials from an HTTP Basic header (RFC 6749 section 2.3.1)."""
    if not authorization:
        return None

    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None

    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise OAuthException(
            error="invalid_client",
            description="Malformed Basic credentials",
            status_code=401,
            headers=INVALID_CLIENT_HEADERS,
        )

    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise OAuthException(
            error="invalid_client",
            description="Malformed Basic credentials",
            status_code=401,
            headers=INVALID_CLIENT_HEADERS,
        )
    return unquote_plus(client_id), unquote_plus(client_secret)


def resolve_client_credentials(
    form_client_id: Optional[str],
    form_client_secret: Optional[str],
    authorization: Optional[str],
) -> Tuple[Optional[str], Optional[str]]:
    basic = parse_basic_auth(authorization)
    if basic is None:
        return form_client_id, form_client_secret

    if form_client_secret:
        raise OAuthException(
            error="invalid_request",
            description="Use only one client authentication method",
        )
    if form_client_id and form_client_id != basic[0]:
        raise OAuthException(error="invalid_request", description="client_id mismatch")
    return basic

# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------

async def issue_token(
    db: AsyncSession,
    flags: FeatureFlags,
    request: TokenRequest,
) -> TokenResponse:
    application = await authenticate_client(db, request.client_id, request.client_secret)
    if not application:
        raise OAuthException(
            error="invalid_client",
            description="Client authentication failed",
            status_code=401,
            headers=INVALID_CLIENT_HEADERS,
        )

    if not await flags.is_oauth_enabled(application.tenant_id):
        raise OAuthException(
            error="unauthorized_client",
            description="OAuth is not enabled for this tenant",
        )

    if request.grant_type.value not in application.grant_types:
        raise OAuthException(
            error="unauthorized_client",
            description=f"Client may not use grant_type: {request.grant_type.value}",
        )

    handler = GRANT_HANDLERS[request.grant_type]
    return await handler(db, request, application)

# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------

async def _code_grant(
    db: AsyncSession,
    request: TokenRequest,
    application: OAuthApplication,
) -> TokenResponse:
    if not request.code:
        raise OAuthException(error="invalid_request", description="Missing code")

    if not request.redirect_uri:
        raise OAuthException(error="invalid_request", description="Missing redirect_uri")

    now = int(time.time())
    auth_code = await code_repo.get_authorization_code(db, hash_token(request.code))

    if not auth_code or auth_code.application_id != application.id:
        raise OAuthException(
            error="invalid_grant",
            description="Invalid or expired authorization code",
        )

    if auth_code.is_used:
        logger.warning(
            "authorization_code_replay: client_id={} code_id={}",
            application.client_id, auth_code.id,
        )
        raise OAuthException(
            error="invalid_grant",
            description="Invalid or expired authorization code",
        )

    if now >= auth_code.expires_at:
        raise OAuthException(
            error="invalid_grant",
            description="Authorization code has expired",
        )

    if request.redirect_uri != auth_code.redirect_uri:
        raise OAuthException(error="invalid_grant", description="redirect_uri mismatch")

    if auth_code.code_challenge:
        if not request.code_verifier:
            raise OAuthException(
                error="invalid_request",
                description="code_verifier required for PKCE",
            )
        if not verify_pkce(
            request.code_verifier,
            auth_code.code_challenge,
            auth_code.code_challenge_method or "plain",
        ):
            raise OAuthException(error="invalid_grant", description="Invalid code_verifier")

    # the guarded UPDATE is what makes the code single use
    if not await code_repo.consume_authorization_code(db, auth_code.id, now):
        await db.rollback()
        logger.warning(
            "authorization_code_race_lost: client_id={} code_id={}",
            application.client_id, auth_code.id,
        )
        raise OAuthException(
            error="invalid_grant",
            description="Invalid or expired authorization code",
        )

    response = await _issue_tokens(
        db,
        application,
        subject_id=auth_code.subject_id,
        scopes=list(auth_code.scopes),
        issue_refresh=GrantType.REFRESH_TOKEN.value in application.grant_types,
    )
    await db.commit()
    return response


async def _refresh_grant(
    db: AsyncSession,
    request: TokenRequest,
    application: OAuthApplication,
) -> TokenResponse:
    if not request.refresh_token:
        raise OAuthException(error="invalid_request", description="Missing refresh_token")

    now = int(time.time())
    record = await token_repo.get_token_by_refresh_hash(db, hash_token(request.refresh_token))

    if not record or record.application_id != application.id or record.is_revoked:
        raise OAuthException(error="invalid_grant", description="Invalid refresh token")

    if not record.refresh_token_expires_at or now >= record.refresh_token_expires_at:
        raise OAuthException(error="invalid_grant", description="Refresh token has expired")

    scopes = list(record.scopes)
    requested = parse_scope(request.scope)
    if requested:
        widened = [s for s in requested if s not in record.scopes]
        if widened:
            raise OAuthException(
                error="invalid_scope",
                description=f"Scope(s) not granted originally: {', '.join(widened)}",
            )
        scopes = requested

    if settings.REFRESH_TOKEN_ROTATION:
        if not await token_repo.revoke_token_record(db, record.id, now):
            await db.rollback()
            raise OAuthException(error="invalid_grant", description="Invalid refresh token")

        response = await _issue_tokens(
            db,
            application,
            subject_id=record.subject_id,
            scopes=scopes,
            issue_refresh=True,
            refresh_expires_at=record.refresh_token_expires_at,
            parent_id=record.id,
        )
    else:
        response = await _issue_tokens(
            db,
            application,
            subject_id=record.subject_id,
            scopes=scopes,
            issue_refresh=False,
            parent_id=record.id,
        )

    await db.commit()
    logger.info(
        "token_refreshed: client_id={} parent={} rotated={}",
        application.client_id, record.id, settings.REFRESH_TOKEN_ROTATION,
    )
    return response


GRANT_HANDLERS: Dict[GrantType, GrantHandler] = {
    GrantType.AUTHORIZATION_CODE: _code_grant,
    GrantType.REFRESH_TOKEN: _refresh_grant,
}

# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------

async def _issue_tokens(
    db: AsyncSession,
    application: OAuthApplication,
    *,
    subject_id: str,
    scopes: List[str],
    issue_refresh: bool,
    refresh_expires_at: Optional[int] = None,
    parent_id: Optional[str] = None,
) -> TokenResponse:
    """Sign an access token and stage its issuance record. Caller commits."""
    now = int(time.time())
    jti = uuid.uuid4().hex

    access_token, expires_at = JWTService().generate_access_token(
        jti=jti,
        subject=subject_id,
        client_id=application.client_id,
        tenant_id=application.tenant_id,
        scopes=scopes,
        issued_at=now,
    )

    refresh_token = generate_opaque_token(settings.TOKEN_BYTES) if issue_refresh else None
    if refresh_token and refresh_expires_at is None:
        refresh_expires_at = now + settings.REFRESH_TOKEN_TTL

    await token_repo.create_token_record(
        db,
        jti=jti,
        application_id=application.id,
        subject_id=subject_id,
        scopes=scopes,
        issued_at=now,
        expires_at=expires_at,
        refresh_token_hash=hash_token(refresh_token) if refresh_token else None,
        refresh_token_expires_at=refresh_expires_at if refresh_token else None,
        parent_id=parent_id,
    )

    logger.info(
        "token_issued: client_id={} jti={} scopes={} refresh={}",
        application.client_id, jti, scopes, bool(refresh_token),
    )

    return TokenResponse(
        access_token=access_token,
        token_type="Bearer",
        expires_in=expires_at - now,
        refresh_token=refresh_token,
        scope=" ".join(scopes),
    )
