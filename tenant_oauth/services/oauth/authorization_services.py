import re
import time
from dataclasses import dataclass
from typing import List, Optional, Union

from fastapi.responses import RedirectResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.common.exceptions import (
    LoginRequiredException,
    OAuthException,
    OAuthRedirectException,
)
from tenant_oauth.common.security import generate_opaque_token, hash_token
from tenant_oauth.common.urls import append_query
from tenant_oauth.core.config import settings
from tenant_oauth.models.dto.oauth_models import (
    ConsentApplication,
    ConsentDecision,
    ConsentResponse,
    GrantType,
)
from tenant_oauth.models.persistance.oauth import OAuthApplication
from tenant_oauth.repositories import code_repo
from tenant_oauth.services.collaborators import FeatureFlags
from tenant_oauth.services.oauth.application_services import lookup_application

# RFC 7636 section 4.2
CODE_CHALLENGE_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


@dataclass
class ValidatedAuthorization:
    application: OAuthApplication
    redirect_uri: str
    scopes: List[str]
    state: Optional[str]
    code_challenge: Optional[str]
    code_challenge_method: Optional[str]


def parse_scope(scope: Optional[str]) -> List[str]:
    """Space-delimited scope string to an ordered, de-duplicated list."""
    if not scope:
        return []
    return list(dict.fromkeys(scope.split()))

# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------

async def validate_authorization_request(
    db: AsyncSession,
    flags: FeatureFlags,
    *,
    response_type: Optional[str],
    client_id: Optional[str],
    redirect_uri: Optional[str],
    scope: Optional[str],
    state: Optional[str],
    code_challenge: Optional[str],
    code_challenge_method: Optional[str],
) -> ValidatedAuthorization:
    """
    Validate an authorization request, failing on the first problem.

    Until the redirect URI is matched against the registered set, errors go
    back to the caller as JSON. After that they are redirected to the client.
    """
    if not response_type:
        raise OAuthException(error="invalid_request", description="Missing response_type")

    if response_type not in settings.RESPONSE_TYPES_SUPPORTED:
        raise OAuthException(
            error="unsupported_response_type",
            description=f"Unsupported response_type: {response_type}",
        )

    if not client_id:
        raise OAuthException(error="invalid_request", description="Missing client_id")

    application = await lookup_application(db, client_id)
    if not application:
        raise OAuthException(error="invalid_client", description="Invalid client_id")

    if not redirect_uri:
        raise OAuthException(error="invalid_request", description="Missing redirect_uri")

    # exact string match, no prefix or normalisation
    if redirect_uri not in application.redirect_uris:
        raise OAuthException(error="invalid_request", description="Invalid redirect_uri")

    # ---- redirect URI is trusted from here on ----

    def fail(error: str, description: str) -> OAuthRedirectException:
        return OAuthRedirectException(
            redirect_uri=redirect_uri,
            error=error,
            description=description,
            state=state,
        )

    if GrantType.AUTHORIZATION_CODE.value not in application.grant_types:
        raise fail("unauthorized_client", "Client may not use the authorization code grant")

    if not await flags.is_oauth_enabled(application.tenant_id):
        raise fail("access_denied", "OAuth is not enabled for this tenant")

    requested = parse_scope(scope)
    if requested:
        invalid = [s for s in requested if s not in application.allowed_scopes]
        if invalid:
            raise fail("invalid_scope", f"Invalid scope(s): {', '.join(invalid)}")
        scopes = requested
    else:
        scopes = list(application.allowed_scopes)

    if code_challenge_method and not code_challenge:
        raise fail("invalid_request", "code_challenge_method given without code_challenge")

    if code_challenge:
        code_challenge_method = code_challenge_method or "plain"
        if code_challenge_method not in settings.CODE_CHALLENGE_METHODS_SUPPORTED:
            raise fail(
                "invalid_request",
                f"Unsupported code_challenge_method: {code_challenge_method}",
            )
        if not CODE_CHALLENGE_PATTERN.match(code_challenge):
            raise fail("invalid_request", "Malformed code_challenge")
    elif settings.PKCE_REQUIRED:
        raise fail("invalid_request", "Missing code_challenge")

    return ValidatedAuthorization(
        application=application,
        redirect_uri=redirect_uri,
        scopes=scopes,
        state=state,
        code_challenge=code_challenge or None,
        code_challenge_method=code_challenge_method if code_challenge else None,
    )

# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------

async def authorize(
    db: AsyncSession,
    flags: FeatureFlags,
    user_id: Optional[str],
    return_to: str,
    *,
    response_type: Optional[str],
    client_id: Optional[str],
    redirect_uri: Optional[str],
    scope: Optional[str],
    state: Optional[str],
    code_challenge: Optional[str],
    code_challenge_method: Optional[str],
) -> Union[RedirectResponse, ConsentResponse]:
    validated = await validate_authorization_request(
        db,
        flags,
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )

    if not user_id:
        raise LoginRequiredException(return_to=return_to)

    application = validated.application
    if application.is_trusted:
        logger.info("authorize_auto_approved: client_id={}", application.client_id)
        return await issue_authorization_code(db, validated, user_id, validated.scopes)

    logger.info("authorize_consent_required: client_id={}", application.client_id)
    return ConsentResponse(
        application=ConsentApplication(
            name=application.name,
            description=application.description,
            logo_url=application.logo_url,
            website_url=application.website_url,
            privacy_policy_url=application.privacy_policy_url,
            terms_of_service_url=application.terms_of_service_url,
        ),
        requested_scopes=validated.scopes,
        client_id=application.client_id,
        redirect_uri=validated.redirect_uri,
        state=validated.state,
        code_challenge=validated.code_challenge,
        code_challenge_method=validated.code_challenge_method,
    )


async def grant_consent(
    db: AsyncSession,
    flags: FeatureFlags,
    user_id: Optional[str],
    decision: ConsentDecision,
) -> RedirectResponse:
    """
    Apply the user's consent decision.

    The decision arrives from the user agent, so the whole authorization
    request is validated again before anything is issued.
    """
    validated = await validate_authorization_request(
        db,
        flags,
        response_type=decision.response_type,
        client_id=decision.client_id,
        redirect_uri=decision.redirect_uri,
        scope=decision.scope,
        state=decision.state,
        code_challenge=decision.code_challenge,
        code_challenge_method=decision.code_challenge_method,
    )

    if not user_id:
        return_to = append_query(
            "/authorize",
            response_type=decision.response_type,
            client_id=decision.client_id,
            redirect_uri=decision.redirect_uri,
            scope=decision.scope,
            state=decision.state,
            code_challenge=decision.code_challenge,
            code_challenge_method=decision.code_challenge_method,
        )
        raise LoginRequiredException(return_to=return_to)

    client_id = validated.application.client_id

    if not decision.approved:
        logger.info("authorize_denied: client_id={}", client_id)
        raise OAuthRedirectException(
            redirect_uri=validated.redirect_uri,
            error="access_denied",
            description="The user denied the request",
            state=validated.state,
        )

    scopes = validated.scopes
    if decision.approved_scopes is not None:
        approved = list(dict.fromkeys(decision.approved_scopes))
        if not approved or any(s not in validated.scopes for s in approved):
            raise OAuthRedirectException(
                redirect_uri=validated.redirect_uri,
                error="invalid_scope",
                description="Approved scopes must be a non-empty subset of the requested scopes",
                state=validated.state,
            )
        scopes = [s for s in validated.scopes if s in approved]

    logger.info("authorize_approved: client_id={} scopes={}", client_id, scopes)
    return await issue_authorization_code(db, validated, user_id, scopes)

# ---------------------------------------------------------------------------
# Code issuance
# ---------------------------------------------------------------------------

async def issue_authorization_code(
    db: AsyncSession,
    validated: ValidatedAuthorization,
    subject_id: str,
    scopes: List[str],
) -> RedirectResponse:
    code = generate_opaque_token(settings.TOKEN_BYTES)
    now = int(time.time())

    await code_repo.create_authorization_code(
        db,
        code_hash=hash_token(code),
        application_id=validated.application.id,
        subject_id=subject_id,
        scopes=scopes,
        redirect_uri=validated.redirect_uri,
        code_challenge=validated.code_challenge,
        code_challenge_method=validated.code_challenge_method,
        issued_at=now,
        expires_at=now + settings.AUTH_CODE_TTL,
    )

    logger.info(
        "authorization_code_issued: client_id={} pkce={}",
        validated.application.client_id, validated.code_challenge_method or "none",
    )

    location = append_query(validated.redirect_uri, code=code, state=validated.state)
    return RedirectResponse(location, status_code=302)
