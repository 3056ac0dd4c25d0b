"""
Permission evaluation and cache management API routes.

Role and permission CRUD is managed elsewhere; these endpoints only read
effective permissions and operate the permission cache.
"""
from datetime import datetime, timezone
from typing import Optional, Union
from fastapi import APIRouter, Depends

from tenant_rbac.core.errors import ValidationError
from tenant_rbac.features.users.dependencies import get_current_user
from tenant_rbac.features.users.models import User
from tenant_rbac.features.permissions.schemas import (
    BulkPermissionCheckResult,
    CacheInvalidationResponse,
    CacheStatistics,
    CacheWarmupRequest,
    CacheWarmupResponse,
    InvalidateCacheRequest,
    PermissionCheckRequest,
    PermissionCheckResult,
    SuperAdminStatus,
    UserEffectivePermissions,
)
from tenant_rbac.features.permissions.dependencies import get_permissions_service, require_permissions
from tenant_rbac.features.permissions.registry import registry
from tenant_rbac.features.permissions.service import PermissionsService
from tenant_rbac.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

CACHE_SCOPE = "permission_cache"
MANAGE_PERMISSION_CACHE = "MANAGE_PERMISSION_CACHE"
VIEW_PERMISSION_CACHE_STATS = "VIEW_PERMISSION_CACHE_STATS"

registry.declare(CACHE_SCOPE, MANAGE_PERMISSION_CACHE)
registry.declare(CACHE_SCOPE, VIEW_PERMISSION_CACHE_STATS, operation="stats")


# ============================================================================
# User Permission Routes
# ============================================================================

@router.get("/users/{user_id}", response_model=UserEffectivePermissions)
async def get_user_permissions(
    user_id: str,
    company_id: Optional[str] = None,
    force_refresh: bool = False,
    current_user: User = Depends(get_current_user),
    service: PermissionsService = Depends(get_permissions_service),
):
    """Get all effective permissions for a user (role-based + direct)."""
    target = await service.authorize_access(user_id, current_user)
    return await service.get_effective_permissions(user_id, company_id or target.company_id, force_refresh)


@router.post("/users/{user_id}/check", response_model=Union[PermissionCheckResult, BulkPermissionCheckResult])
async def check_user_permissions(
    user_id: str,
    check: PermissionCheckRequest,
    current_user: User = Depends(get_current_user),
    service: PermissionsService = Depends(get_permissions_service),
):
    """Check one (`permission_name`) or several (`permission_names`) permissions."""
    target = await service.authorize_access(user_id, current_user)
    company_id = check.company_id or target.company_id

    if check.permission_name:
        return await service.check(user_id, check.permission_name, company_id)
    if check.permission_names:
        return await service.check_bulk(user_id, check.permission_names, company_id)

    raise ValidationError(
        "Must provide either permission_name or permission_names",
        code="INVALID_PERMISSION_CHECK",
    )


@router.get("/users/{user_id}/super-admin-status", response_model=SuperAdminStatus)
async def get_super_admin_status(
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: PermissionsService = Depends(get_permissions_service),
):
    """Check whether a user holds the super admin role."""
    await service.authorize_access(user_id, current_user)
    is_super_admin = await service.is_super_admin(user_id)
    return SuperAdminStatus(
        user_id=user_id,
        is_super_admin=is_super_admin,
        method="role_based" if is_super_admin else "none",
        checked_at=datetime.now(timezone.utc),
    )


# ============================================================================
# Cache Management Routes
# ============================================================================

@router.post("/cache/invalidate", response_model=CacheInvalidationResponse)
async def invalidate_cache(
    criteria: InvalidateCacheRequest,
    current_user: User = Depends(require_permissions(CACHE_SCOPE)),
    service: PermissionsService = Depends(get_permissions_service),
):
    """Invalidate permission cache entries matching the criteria."""
    log.info(f"User {current_user.id} invalidating permission cache: {criteria.model_dump(exclude_none=True)}")
    return await service.invalidate_cache(criteria)


@router.post("/cache/warmup", response_model=CacheWarmupResponse)
async def warmup_cache(
    criteria: CacheWarmupRequest,
    current_user: User = Depends(require_permissions(CACHE_SCOPE)),
    service: PermissionsService = Depends(get_permissions_service),
):
    """Pre-load permissions into the cache."""
    log.info(f"User {current_user.id} warming up permission cache")
    return await service.warmup_cache(criteria)


@router.get("/cache/stats", response_model=CacheStatistics)
async def get_cache_statistics(
    current_user: User = Depends(require_permissions(CACHE_SCOPE, "stats")),
    service: PermissionsService = Depends(get_permissions_service),
):
    """Retrieve permission cache statistics."""
    return await service.get_cache_statistics()
