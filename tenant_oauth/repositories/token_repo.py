from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.models.persistance.oauth import OAuthAccessToken, OAuthApplication


async def create_token_record(
    db: AsyncSession,
    *,
    jti: str,
    application_id: str,
    subject_id: str,
    scopes: list[str],
    issued_at: int,
    expires_at: int,
    refresh_token_hash: str | None,
    refresh_token_expires_at: int | None,
    parent_id: str | None = None,
) -> OAuthAccessToken:
    """Add an issuance record to the current transaction (no commit)."""
    record = OAuthAccessToken(
        jti=jti,
        application_id=application_id,
        subject_id=subject_id,
        scopes=scopes,
        expires_at=expires_at,
        refresh_token_hash=refresh_token_hash,
        refresh_token_expires_at=refresh_token_expires_at,
        parent_id=parent_id,
        is_revoked=False,
        created_at=issued_at,
    )
    db.add(record)
    await db.flush()
    return record


async def get_token_by_jti(
    db: AsyncSession,
    jti: str,
) -> OAuthAccessToken | None:
    stmt = select(OAuthAccessToken).where(OAuthAccessToken.jti == jti)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_token_by_refresh_hash(
    db: AsyncSession,
    refresh_token_hash: str,
) -> OAuthAccessToken | None:
    stmt = select(OAuthAccessToken).where(
        OAuthAccessToken.refresh_token_hash == refresh_token_hash
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def revoke_token_record(
    db: AsyncSession,
    record_id: str,
    revoked_at: int,
) -> bool:
    """
    Set `is_revoked` if it is still false.

    Returns True only for the request that flipped the flag, which is what
    makes refresh-token rotation single use.
    """
    stmt = (
        update(OAuthAccessToken)
        .where(
            OAuthAccessToken.id == record_id,
            OAuthAccessToken.is_revoked.is_(False),
        )
        .values(is_revoked=True, revoked_at=revoked_at)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def revoke_application_tokens(
    db: AsyncSession,
    application_id: str,
    revoked_at: int,
) -> int:
    stmt = (
        update(OAuthAccessToken)
        .where(
            OAuthAccessToken.application_id == application_id,
            OAuthAccessToken.is_revoked.is_(False),
        )
        .values(is_revoked=True, revoked_at=revoked_at)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def revoke_child_records(
    db: AsyncSession,
    parent_id: str,
    revoked_at: int,
) -> int:
    """Revoke records refreshed from `parent_id` that are still live."""
    stmt = (
        update(OAuthAccessToken)
        .where(
            OAuthAccessToken.parent_id == parent_id,
            OAuthAccessToken.is_revoked.is_(False),
        )
        .values(is_revoked=True, revoked_at=revoked_at)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def purge_expired_tokens(db: AsyncSession, tenant_id: str, before: int) -> int:
    tenant_apps = select(OAuthApplication.id).where(OAuthApplication.tenant_id == tenant_id)
    # a record lives as long as the longer of its two tokens
    last_valid = func.coalesce(
        OAuthAccessToken.refresh_token_expires_at, OAuthAccessToken.expires_at
    )
    stmt = (
        delete(OAuthAccessToken)
        .where(
            OAuthAccessToken.application_id.in_(tenant_apps),
            or_(
                last_valid < before,
                OAuthAccessToken.revoked_at < before,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount
