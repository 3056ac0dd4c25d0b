"""
FastAPI dependencies wiring the permission service and access guard into routes.

Usage:
    registry.declare("reports", "VIEW_REPORTS")
    registry.declare("reports", "EXPORT_REPORTS", operation="export")

    @router.get("/reports/export")
    async def export_reports(
        user: User = Depends(require_permissions("reports", "export"))
    ):
        # User has VIEW_REPORTS and EXPORT_REPORTS (or is a super admin)
        ...
"""
from typing import Optional
from fastapi import Depends, Request

from tenant_rbac.core.errors import ForbiddenError
from tenant_rbac.features.users.dependencies import get_current_user
from tenant_rbac.features.users.models import User
from tenant_rbac.features.permissions.guard import AccessGuard, SuperAdminDetector
from tenant_rbac.features.permissions.registry import PermissionRegistry, registry as default_registry
from tenant_rbac.features.permissions.service import PermissionsService


def get_permissions_service(request: Request) -> PermissionsService:
    """The service instance created at startup and held on app.state."""
    return request.app.state.permissions_service


async def detect_super_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: PermissionsService = Depends(get_permissions_service),
) -> bool:
    """
    Mark the request as super-admin bypassed. Never denies: on error the
    request continues to the normal permission check.
    """
    if getattr(request.state, "super_admin_bypass", False):
        return True
    bypass = await SuperAdminDetector(service).detect(current_user)
    request.state.super_admin_bypass = bypass
    return bypass


def require_permissions(
    scope: str,
    operation: Optional[str] = None,
    registry: PermissionRegistry = default_registry,
):
    """
    Build a dependency enforcing the permissions declared for (scope, operation).

    Returns the current user when access is allowed.

    Raises:
        ForbiddenError: 403 when any declared permission is missing
    """
    async def permission_dependency(
        current_user: User = Depends(get_current_user),
        bypass: bool = Depends(detect_super_admin),
        service: PermissionsService = Depends(get_permissions_service),
    ) -> User:
        required = registry.required_permissions(scope, operation)
        decision = await AccessGuard(service).check_access(required, current_user, bypass=bypass)
        if not decision.allowed:
            raise ForbiddenError(decision.reason or "Forbidden", code="INSUFFICIENT_PERMISSIONS")
        return current_user

    return permission_dependency
