from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.models.persistance.oauth import OAuthApplication, OAuthAuthorizationCode


async def create_authorization_code(
    db: AsyncSession,
    *,
    code_hash: str,
    application_id: str,
    subject_id: str,
    scopes: list[str],
    redirect_uri: str,
    code_challenge: str | None,
    code_challenge_method: str | None,
    issued_at: int,
    expires_at: int,
) -> OAuthAuthorizationCode:
    auth_code = OAuthAuthorizationCode(
        code_hash=code_hash,
        application_id=application_id,
        subject_id=subject_id,
        scopes=scopes,
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        is_used=False,
        expires_at=expires_at,
        created_at=issued_at,
    )

    db.add(auth_code)
    await db.commit()
    return auth_code


async def get_authorization_code(
    db: AsyncSession,
    code_hash: str,
) -> OAuthAuthorizationCode | None:
    stmt = select(OAuthAuthorizationCode).where(OAuthAuthorizationCode.code_hash == code_hash)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def consume_authorization_code(
    db: AsyncSession,
    code_id: str,
    used_at: int,
) -> bool:
    """
    Flip `is_used` in a single guarded UPDATE.

    Returns False when another request consumed the code first. The caller
    owns the transaction.
    """
    stmt = (
        update(OAuthAuthorizationCode)
        .where(
            OAuthAuthorizationCode.id == code_id,
            OAuthAuthorizationCode.is_used.is_(False),
        )
        .values(is_used=True, used_at=used_at)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def purge_expired_codes(db: AsyncSession, tenant_id: str, before: int) -> int:
    tenant_apps = select(OAuthApplication.id).where(OAuthApplication.tenant_id == tenant_id)
    stmt = (
        delete(OAuthAuthorizationCode)
        .where(
            OAuthAuthorizationCode.application_id.in_(tenant_apps),
            OAuthAuthorizationCode.expires_at < before,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount
