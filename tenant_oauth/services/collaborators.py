"""
Contracts with the rest of the platform.

Tenant feature flags and end-user authentication live outside this server.
They are reached through the dependencies below so the HTTP layer (and the
tests) can swap in real implementations with `app.dependency_overrides`.
"""

from typing import Iterable, Optional, Protocol

from fastapi import Request

from tenant_oauth.common.exceptions import AppException
from tenant_oauth.core.config import settings


class FeatureFlags(Protocol):
    async def is_oauth_enabled(self, tenant_id: str) -> bool:
        ...


class StaticFeatureFlags:
    """Feature flags from a fixed allow-list; `*` enables every tenant."""

    def __init__(self, enabled_tenants: Iterable[str]):
        self.enabled_tenants = set(enabled_tenants)

    async def is_oauth_enabled(self, tenant_id: str) -> bool:
        return "*" in self.enabled_tenants or tenant_id in self.enabled_tenants


def get_feature_flags() -> FeatureFlags:
    return StaticFeatureFlags(settings.OAUTH_ENABLED_TENANTS)


def get_current_user_id(request: Request) -> Optional[str]:
    """The end user authenticated by the upstream session layer, if any."""
    user_id = request.headers.get(settings.SESSION_USER_HEADER)
    return user_id or None


def get_admin_tenant_id(request: Request) -> str:
    """The tenant the calling administrator acts for."""
    tenant_id = request.headers.get(settings.ADMIN_TENANT_HEADER)
    if not tenant_id:
        raise AppException(message="Administrator tenant not resolved", status_code=401)
    return tenant_id
