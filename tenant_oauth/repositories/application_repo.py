from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.models.persistance.oauth import OAuthApplication


async def create_application(
    db: AsyncSession,
    *,
    tenant_id: str,
    client_id: str,
    client_secret_hash: str,
    name: str,
    redirect_uris: list[str],
    allowed_scopes: list[str],
    grant_types: list[str],
    is_trusted: bool,
    issued_at: int,
    **metadata: str | None,
) -> OAuthApplication:
    application = OAuthApplication(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret_hash=client_secret_hash,
        name=name,
        redirect_uris=redirect_uris,
        allowed_scopes=allowed_scopes,
        grant_types=grant_types,
        is_trusted=is_trusted,
        is_active=True,
        created_at=issued_at,
        updated_at=issued_at,
        **metadata,
    )

    db.add(application)
    await db.commit()
    await db.refresh(application)
    return application


async def get_application_by_client_id(
    db: AsyncSession,
    client_id: str,
    *,
    include_inactive: bool = False,
) -> OAuthApplication | None:
    stmt = select(OAuthApplication).where(OAuthApplication.client_id == client_id)
    if not include_inactive:
        stmt = stmt.where(OAuthApplication.is_active.is_(True))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_application_by_id(
    db: AsyncSession,
    application_id: str,
) -> OAuthApplication | None:
    return await db.get(OAuthApplication, application_id)


async def get_tenant_application(
    db: AsyncSession,
    tenant_id: str,
    client_id: str,
) -> OAuthApplication | None:
    stmt = select(OAuthApplication).where(
        OAuthApplication.client_id == client_id,
        OAuthApplication.tenant_id == tenant_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_applications(
    db: AsyncSession,
    tenant_id: str,
) -> list[OAuthApplication]:
    stmt = (
        select(OAuthApplication)
        .where(OAuthApplication.tenant_id == tenant_id)
        .order_by(OAuthApplication.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_application(
    db: AsyncSession,
    application: OAuthApplication,
    *,
    updated_at: int,
    fields: dict[str, Any],
) -> OAuthApplication:
    for key, value in fields.items():
        setattr(application, key, value)
    application.updated_at = updated_at

    await db.commit()
    await db.refresh(application)
    return application
