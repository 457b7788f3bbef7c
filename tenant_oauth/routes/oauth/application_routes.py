from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_oauth.core.db import get_session
from tenant_oauth.models.dto.oauth_models import (
    ApplicationCreateRequest,
    ApplicationCreatedResponse,
    ApplicationResponse,
    ApplicationUpdateRequest,
    PurgeResponse,
    SecretRotationResponse,
)
from tenant_oauth.services.collaborators import (
    FeatureFlags,
    get_admin_tenant_id,
    get_feature_flags,
)
from tenant_oauth.services.oauth import application_services

router = APIRouter(prefix="/applications", tags=["applications"])

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

@router.post("", response_model=ApplicationCreatedResponse, status_code=201)
async def register_application(
    payload: ApplicationCreateRequest,
    tenant_id: str = Depends(get_admin_tenant_id),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    application, client_secret = await application_services.register_application(
        db, tenant_id, payload, flags
    )
    return ApplicationCreatedResponse(
        **ApplicationResponse.model_validate(application).model_dump(),
        client_secret=client_secret,
    )


@router.get("", response_model=List[ApplicationResponse])
async def list_applications(
    tenant_id: str = Depends(get_admin_tenant_id),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    return await application_services.list_applications(db, tenant_id, flags)

# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

@router.post("/maintenance/purge", response_model=PurgeResponse)
async def purge_expired(
    retention_days: Optional[int] = None,
    tenant_id: str = Depends(get_admin_tenant_id),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    return await application_services.purge_expired(db, tenant_id, flags, retention_days)

# ---------------------------------------------------------------------------
# Single application
# ---------------------------------------------------------------------------

@router.get("/{client_id}", response_model=ApplicationResponse)
async def get_application(
    client_id: str,
    tenant_id: str = Depends(get_admin_tenant_id),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    return await application_services.get_application(db, tenant_id, client_id, flags)


@router.patch("/{client_id}", response_model=ApplicationResponse)
async def update_application(
    client_id: str,
    payload: ApplicationUpdateRequest,
    tenant_id: str = Depends(get_admin_tenant_id),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    return await application_services.update_application(
        db, tenant_id, client_id, payload, flags
    )


@router.delete("/{client_id}", response_model=ApplicationResponse)
async def deactivate_application(
    client_id: str,
    tenant_id: str = Depends(get_admin_tenant_id),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    return await application_services.deactivate_application(db, tenant_id, client_id, flags)


@router.post("/{client_id}/secret", response_model=SecretRotationResponse)
async def rotate_client_secret(
    client_id: str,
    tenant_id: str = Depends(get_admin_tenant_id),
    db: AsyncSession = Depends(get_session),
    flags: FeatureFlags = Depends(get_feature_flags),
):
    application, client_secret = await application_services.rotate_client_secret(
        db, tenant_id, client_id, flags
    )
    return {"client_id": application.client_id, "client_secret": client_secret}
