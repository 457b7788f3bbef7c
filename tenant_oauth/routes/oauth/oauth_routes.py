from typing import List, Optional

from fastapi import APIRouter, Depends, Form, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.core.db import get_session
from tenant_oauth.models.dto.oauth_models import (
    AuthorizationServerMetadata,
    ConsentDecision,
    HealthResponse,
    IntrospectionResponse,
    RevocationResponse,
    TokenRequest,
    TokenResponse,
)
from tenant_oauth.services.collaborators import (
    FeatureFlags,
    get_current_user_id,
    get_feature_flags,
)
from tenant_oauth.services.oauth import (
    authorization_services,
    metadata_services,
    revocation_services,
    token_services,
)

router = APIRouter()

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse, include_in_schema=False)
def health():
    return metadata_services.health()


@router.get(
    "/.well-known/oauth-authorization-server",
    response_model=AuthorizationServerMetadata,
)
def authorization_server_metadata():
    return metadata_services.authorization_server_metadata()

# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

@router.get("/authorize", response_model=None)
async def authorize(
    request: Request,
    response_type: Optional[str] = None,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return_to = request.url.path
    if request.url.query:
        return_to = f"{return_to}?{request.url.query}"

    return await authorization_services.authorize(
        db,
        flags,
        user_id,
        return_to,
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )


@router.post("/authorize/consent", response_model=None)
async def grant_consent(
    client_id: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    response_type: str = Form("code"),
    scope: Optional[str] = Form(None),
    state: Optional[str] = Form(None),
    code_challenge: Optional[str] = Form(None),
    code_challenge_method: Optional[str] = Form(None),
    approved: bool = Form(False),
    approved_scopes: Optional[List[str]] = Form(None),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    decision = ConsentDecision(
        client_id=client_id,
        redirect_uri=redirect_uri,
        response_type=response_type,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        approved=approved,
        approved_scopes=approved_scopes,
    )
    return await authorization_services.grant_consent(db, flags, user_id, decision)

# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------

@router.post(
    "/token",
    response_model=TokenResponse,
    response_model_exclude_none=True,
)
async def token(
    response: Response,
    grant_type: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    code_verifier: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    scope: Optional[str] = Form(None),
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    client_id, client_secret = token_services.resolve_client_credentials(
        client_id, client_secret, authorization
    )
    token_request = TokenRequest(
        grant_type=token_services.parse_grant_type(grant_type),
        client_id=client_id,
        client_secret=client_secret,
        code=code,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        refresh_token=refresh_token,
        scope=scope,
    )

    response.headers.update(NO_STORE_HEADERS)
    return await token_services.issue_token(db, flags, token_request)

# ---------------------------------------------------------------------------
# Revocation / introspection
# ---------------------------------------------------------------------------

@router.post("/revoke", response_model=RevocationResponse)
async def revoke(
    token: Optional[str] = Form(None),
    token_type_hint: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_session),
):
    return await revocation_services.revoke(db, token, token_type_hint)


@router.post(
    "/introspect",
    response_model=IntrospectionResponse,
    response_model_exclude_none=True,
)
async def introspect(
    response: Response,
    token: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    response.headers.update(NO_STORE_HEADERS)
    return await revocation_services.introspect(db, flags, token)
