import secrets
import time
from typing import Optional, Tuple

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from tenant_oauth.common.exceptions import AppException
from tenant_oauth.common.security import (
    dummy_secret_hash,
    generate_opaque_token,
    get_secret_hasher,
)
from tenant_oauth.common.urls import is_absolute_redirect_uri
from tenant_oauth.core.config import settings
from tenant_oauth.models.dto.oauth_models import (
    ApplicationCreateRequest,
    ApplicationUpdateRequest,
)
from tenant_oauth.models.persistance.oauth import OAuthApplication
from tenant_oauth.repositories import application_repo, code_repo, token_repo
from tenant_oauth.services.collaborators import FeatureFlags

CLIENT_ID_PREFIX = "oauth_"

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate_redirect_uris(redirect_uris: list[str]) -> list[str]:
    if not redirect_uris:
        raise AppException(message="At least one redirect URI is required")

    invalid = [uri for uri in redirect_uris if not is_absolute_redirect_uri(uri)]
    if invalid:
        raise AppException(
            message=f"Redirect URIs must be absolute and fragment free: {', '.join(invalid)}"
        )

    # exact strings are kept; no normalisation
    return list(dict.fromkeys(redirect_uris))


def _validate_scopes(scopes: list[str]) -> list[str]:
    if not scopes:
        raise AppException(message="At least one scope is required")

    unsupported = [s for s in scopes if s not in settings.SUPPORTED_SCOPES]
    if unsupported:
        raise AppException(message=f"Unsupported scope(s): {', '.join(unsupported)}")

    return list(dict.fromkeys(scopes))


def _validate_grant_types(grant_types: list[str]) -> list[str]:
    if not grant_types:
        raise AppException(message="At least one grant type is required")

    unsupported = [g for g in grant_types if g not in settings.GRANT_TYPES_SUPPORTED]
    if unsupported:
        raise AppException(message=f"Unsupported grant_type(s): {', '.join(unsupported)}")

    return list(dict.fromkeys(grant_types))


async def _ensure_oauth_enabled(flags: FeatureFlags, tenant_id: str) -> None:
    if not await flags.is_oauth_enabled(tenant_id):
        raise AppException(message="OAuth is not enabled for this tenant", status_code=403)


def _new_client_secret() -> Tuple[str, str]:
    secret = generate_opaque_token(settings.TOKEN_BYTES)
    return secret, get_secret_hasher().hash(secret)


def _verify_client_secret(secret: str, secret_hash: Optional[str]) -> bool:
    return get_secret_hasher().verify(secret, secret_hash or dummy_secret_hash())

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

async def register_application(
    db: AsyncSession,
    tenant_id: str,
    payload: ApplicationCreateRequest,
    flags: FeatureFlags,
) -> Tuple[OAuthApplication, str]:
    """
    Create an application. The plaintext secret is returned here and never
    again; only its hash is stored.
    """
    await _ensure_oauth_enabled(flags, tenant_id)

    redirect_uris = _validate_redirect_uris(payload.redirect_uris)
    allowed_scopes = _validate_scopes(payload.allowed_scopes)
    grant_types = _validate_grant_types(payload.grant_types)

    client_id = CLIENT_ID_PREFIX + secrets.token_hex(settings.CLIENT_ID_BYTES)
    client_secret, secret_hash = await run_in_threadpool(_new_client_secret)

    application = await application_repo.create_application(
        db,
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret_hash=secret_hash,
        name=payload.name,
        redirect_uris=redirect_uris,
        allowed_scopes=allowed_scopes,
        grant_types=grant_types,
        is_trusted=payload.is_trusted,
        issued_at=int(time.time()),
        description=payload.description,
        logo_url=payload.logo_url,
        website_url=payload.website_url,
        privacy_policy_url=payload.privacy_policy_url,
        terms_of_service_url=payload.terms_of_service_url,
    )

    logger.info(
        "application_registered: tenant={} client_id={} trusted={}",
        tenant_id, client_id, application.is_trusted,
    )
    return application, client_secret


async def lookup_application(
    db: AsyncSession,
    client_id: Optional[str],
) -> Optional[OAuthApplication]:
    """Active application for `client_id`; inactive ones look missing."""
    if not client_id:
        return None
    return await application_repo.get_application_by_client_id(db, client_id)


async def authenticate_client(
    db: AsyncSession,
    client_id: Optional[str],
    client_secret: Optional[str],
) -> Optional[OAuthApplication]:
    """
    Resolve and verify client credentials.

    A hash comparison runs even for unknown clients so timing does not
    reveal which client ids exist.
    """
    application = await lookup_application(db, client_id)
    secret_hash = application.client_secret_hash if application else None

    valid = await run_in_threadpool(_verify_client_secret, client_secret or "", secret_hash)
    if not application or not valid:
        return None
    return application


async def list_applications(
    db: AsyncSession,
    tenant_id: str,
    flags: FeatureFlags,
) -> list[OAuthApplication]:
    await _ensure_oauth_enabled(flags, tenant_id)
    return await application_repo.list_applications(db, tenant_id)


async def get_application(
    db: AsyncSession,
    tenant_id: str,
    client_id: str,
    flags: FeatureFlags,
) -> OAuthApplication:
    await _ensure_oauth_enabled(flags, tenant_id)

    application = await application_repo.get_tenant_application(db, tenant_id, client_id)
    if not application:
        raise AppException(message="OAuth application not found", status_code=404)
    return application


async def update_application(
    db: AsyncSession,
    tenant_id: str,
    client_id: str,
    payload: ApplicationUpdateRequest,
    flags: FeatureFlags,
) -> OAuthApplication:
    application = await get_application(db, tenant_id, client_id, flags)

    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise AppException(message="No fields to update")

    if "redirect_uris" in fields:
        fields["redirect_uris"] = _validate_redirect_uris(fields["redirect_uris"] or [])
    if "allowed_scopes" in fields:
        fields["allowed_scopes"] = _validate_scopes(fields["allowed_scopes"] or [])
    if "grant_types" in fields:
        fields["grant_types"] = _validate_grant_types(fields["grant_types"] or [])
    for flag in ("name", "is_trusted", "is_active"):
        if flag in fields and fields[flag] is None:
            raise AppException(message=f"{flag} cannot be null")

    if fields.get("is_active") is False and application.is_active:
        await token_repo.revoke_application_tokens(db, application.id, int(time.time()))

    application = await application_repo.update_application(
        db,
        application,
        updated_at=int(time.time()),
        fields=fields,
    )

    logger.info(
        "application_updated: tenant={} client_id={} fields={}",
        tenant_id, client_id, sorted(fields),
    )
    return application


async def deactivate_application(
    db: AsyncSession,
    tenant_id: str,
    client_id: str,
    flags: FeatureFlags,
) -> OAuthApplication:
    """Soft delete: the row stays while tokens reference it."""
    application = await get_application(db, tenant_id, client_id, flags)
    now = int(time.time())

    revoked = await token_repo.revoke_application_tokens(db, application.id, now)
    application = await application_repo.update_application(
        db,
        application,
        updated_at=now,
        fields={"is_active": False},
    )

    logger.info(
        "application_deactivated: tenant={} client_id={} tokens_revoked={}",
        tenant_id, client_id, revoked,
    )
    return application


async def rotate_client_secret(
    db: AsyncSession,
    tenant_id: str,
    client_id: str,
    flags: FeatureFlags,
) -> Tuple[OAuthApplication, str]:
    application = await get_application(db, tenant_id, client_id, flags)
    if not application.is_active:
        raise AppException(message="OAuth application is inactive", status_code=409)

    client_secret, secret_hash = await run_in_threadpool(_new_client_secret)
    application = await application_repo.update_application(
        db,
        application,
        updated_at=int(time.time()),
        fields={"client_secret_hash": secret_hash},
    )

    logger.info("client_secret_rotated: tenant={} client_id={}", tenant_id, client_id)
    return application, client_secret

# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

async def purge_expired(
    db: AsyncSession,
    tenant_id: str,
    flags: FeatureFlags,
    retention_days: Optional[int] = None,
) -> dict:
    """
    Delete the tenant's codes and token records expired for longer than the
    retention window. Other tenants' rows are never touched.
    """
    await _ensure_oauth_enabled(flags, tenant_id)

    days = settings.PURGE_RETENTION_DAYS if retention_days is None else retention_days
    before = int(time.time()) - days * 86400

    codes = await code_repo.purge_expired_codes(db, tenant_id, before)
    tokens = await token_repo.purge_expired_tokens(db, tenant_id, before)
    await db.commit()

    logger.info(
        "purge_expired: tenant={} codes={} tokens={} before={}",
        tenant_id, codes, tokens, before,
    )
    return {"authorization_codes": codes, "access_tokens": tokens}
