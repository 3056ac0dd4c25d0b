"""
Request-time access decisions.

Two separate code paths:
- SuperAdminDetector: an optimization that may mark a request as bypassed.
  It fails open: on error the request simply goes through the normal check.
- AccessGuard: the authorization decision itself. It fails closed: any
  error from the permission service denies access.
"""
import time
from typing import Any, List, Sequence

from tenant_rbac.core.errors import ForbiddenError
from tenant_rbac.features.permissions.schemas import AccessDecision
from tenant_rbac.utils import get_logger


log = get_logger(__name__)

PERMISSION_CHECK_FAILED = "Permission check failed"


def deduplicate(permissions: Sequence[str]) -> List[str]:
    """Order-preserving, case-sensitive dedup."""
    return list(dict.fromkeys(permissions))


def _validated_principal(principal: Any) -> Any:
    if principal is None:
        raise ForbiddenError("User not authenticated", code="NOT_AUTHENTICATED")
    user_id = getattr(principal, "id", None)
    if not isinstance(user_id, str) or not user_id:
        raise ForbiddenError("Invalid user context", code="INVALID_USER_CONTEXT")
    return principal


class AccessGuard:
    """Grants access only when every required permission is granted (AND semantics)."""

    def __init__(self, service):
        self.service = service

    async def check_access(
        self,
        required_permissions: Sequence[str],
        principal: Any,
        bypass: bool = False,
    ) -> AccessDecision:
        """
        Decide whether `principal` may perform an operation needing `required_permissions`.

        Raises:
            ForbiddenError: no principal, or a principal without a usable id
        """
        start = time.perf_counter()

        if not required_permissions:
            log.debug("No permissions required - allowing access")
            return AccessDecision(allowed=True)

        user = _validated_principal(principal)

        if bypass:
            log.debug(f"Super admin bypass flag detected for user {user.id} - bypassing permission checks")
            return AccessDecision(allowed=True, required=list(required_permissions))

        required = deduplicate(required_permissions)
        log.debug(f"Checking permissions for user {user.id}: [{', '.join(required)}]")

        try:
            check = await self.service.check_bulk(user.id, required, getattr(user, "company_id", None))
            granted = {result.permission_name for result in check.results if result.granted}
        except ForbiddenError as exc:
            log.warning(f"Permission check forbidden for user {user.id}: {exc.message}")
            return AccessDecision(allowed=False, reason=exc.message, required=required, missing=required)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            log.error(f"Permission service error for user {user.id} after {duration_ms:.1f}ms: {exc!r}")
            return AccessDecision(
                allowed=False, reason=PERMISSION_CHECK_FAILED, required=required, missing=required
            )

        missing = [name for name in required if name not in granted]
        duration_ms = (time.perf_counter() - start) * 1000

        if missing:
            log.warning(
                f"Permission check failed for user {user.id} in {duration_ms:.1f}ms. "
                f"Required: [{', '.join(required)}], Missing: [{', '.join(missing)}]"
            )
            return AccessDecision(
                allowed=False,
                reason=f"Insufficient permissions. Required: {', '.join(required)}. Missing: {', '.join(missing)}",
                required=required,
                missing=missing,
            )

        log.debug(f"Permission check passed for user {user.id} in {duration_ms:.1f}ms")
        return AccessDecision(allowed=True, required=required)


class SuperAdminDetector:
    """Marks super admins so later checks in the same request can be skipped."""

    def __init__(self, service):
        self.service = service

    async def detect(self, principal: Any) -> bool:
        if principal is None or not getattr(principal, "id", None):
            return False
        try:
            is_super_admin = await self.service.is_super_admin(principal.id)
        except Exception as exc:
            log.warning(f"Error checking super admin status for user {principal.id}: {exc!r}")
            return False

        if is_super_admin:
            log.debug(f"Super admin detected for user {principal.id} - bypassing permission checks")
        return is_super_admin
