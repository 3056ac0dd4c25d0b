"""
Permission evaluation service.

Implements:
- Effective permission calculation (role-based + direct grants, super admin short-circuit)
- Cached single and bulk permission checks
- Cache invalidation, warmup and statistics
- Target-user access rules for the permission endpoints
"""
import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from tenant_rbac.core import config
from tenant_rbac.core.errors import AppError, ForbiddenError, InternalFailure, NotFoundError, ValidationError
from tenant_rbac.features.permissions.cache import CacheKey, PermissionCache
from tenant_rbac.features.permissions.schemas import (
    BulkPermissionCheckResult,
    CacheConfig,
    CacheInvalidationResponse,
    CacheStatistics,
    CacheWarmupRequest,
    CacheWarmupResponse,
    EffectivePermission,
    InvalidateCacheRequest,
    PermissionCheckResult,
    PermissionSource,
    UserEffectivePermissions,
)
from tenant_rbac.utils import get_logger


log = get_logger(__name__)

USER_PERMISSIONS = "user_permissions"
SUPER_ADMIN_LABEL = "Super Admin"
WARMUP_ALL_LIMIT = 1000
WARMUP_CONCURRENCY = 10

_REDACTED = "[REDACTED]"
_SENSITIVE_PATTERNS = [
    re.compile(r"\b[a-z][a-z0-9+.\-]*://[^\s@/]*@[^\s/]*", re.IGNORECASE),  # URLs with credentials
    re.compile(r"\b(?:password|passwd|pwd|secret|token|api[_-]?key|key)\s*[=:]\s*[^\s;,)]*", re.IGNORECASE),
    re.compile(r"localhost", re.IGNORECASE),
    re.compile(r"\b(?:[a-z0-9](?:[a-z0-9\-]*[a-z0-9])?\.)+[a-z]{2,}(?::\d+)?\b", re.IGNORECASE),  # host names
    re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}(?::\d+)?\b"),
    re.compile(r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+){2,}"),  # file system paths
]


def sanitize_error_message(error: Any) -> str:
    """Strip credentials, hosts, IPs and paths from an error message."""
    if error is None:
        return "An unexpected error occurred"
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    for pattern in _SENSITIVE_PATTERNS:
        message = pattern.sub(_REDACTED, message)
    return message


def merge_permissions(
    role_permissions: Iterable[EffectivePermission],
    direct_permissions: Iterable[EffectivePermission],
) -> List[EffectivePermission]:
    """
    Merge role and direct grants by permission name.

    Active direct grants overwrite role grants; the result is sorted by
    category then name so that identical inputs give identical output.
    """
    merged = {}
    for permission in role_permissions:
        merged[permission.name] = permission
    for permission in direct_permissions:
        if permission.is_active:
            merged[permission.name] = permission
    return sorted(merged.values(), key=lambda p: (p.category or "", p.name))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PermissionsService:
    """
    Computes and caches effective permissions.

    The service owns its cache; nothing about permission state is global.
    `store` is any object with the PermissionStore read methods.
    """

    def __init__(
        self,
        store,
        cache: Optional[PermissionCache] = None,
        super_admin_role_name: str = config.SUPER_ADMIN_ROLE_NAME,
        super_admin_role_code: str = config.SUPER_ADMIN_ROLE_CODE,
    ):
        self.store = store
        self.cache = cache if cache is not None else PermissionCache(
            ttl_seconds=config.PERMISSIONS_CACHE_TTL,
            max_entries=config.PERMISSIONS_MAX_CACHE_ENTRIES,
            enabled=config.PERMISSIONS_CACHE_ENABLED,
        )
        self.super_admin_role_name = super_admin_role_name
        self.super_admin_role_code = super_admin_role_code
        log.info(f"PermissionsService initialized with config: {self.get_config().model_dump()}")

    def get_config(self) -> CacheConfig:
        return CacheConfig(
            ttl_seconds=self.cache.ttl_seconds,
            max_entries=self.cache.max_entries,
            enabled=self.cache.enabled,
        )

    # ========================================================================
    # Super admin
    # ========================================================================

    def is_super_admin_role(self, role) -> bool:
        if role is None:
            return False
        return role.name == self.super_admin_role_name or role.code == self.super_admin_role_code

    async def is_super_admin(self, user_id: str) -> bool:
        """True iff the user exists and holds the super admin role. Store errors propagate."""
        user = await self.store.get_user(user_id)
        if user is None:
            return False
        return self.is_super_admin_role(user.role)

    # ========================================================================
    # Effective permissions
    # ========================================================================

    async def compute_effective_permissions(
        self,
        user_id: str,
        company_id: Optional[str] = None,
    ) -> UserEffectivePermissions:
        """
        Calculate a user's effective permissions straight from the store.

        Raises:
            NotFoundError: the user does not exist
            ValidationError: company_id is given and is not the user's company
            InternalFailure: the store failed (message sanitized)
        """
        start = time.perf_counter()
        try:
            result = await self._compute(user_id, company_id)
        except AppError:
            raise
        except Exception as exc:
            log.exception(f"Error calculating effective permissions for user {user_id}: {sanitize_error_message(exc)}")
            raise InternalFailure(
                "Failed to compute user permissions",
                code="PERMISSION_COMPUTATION_FAILED",
            ) from exc

        duration_ms = (time.perf_counter() - start) * 1000
        log.debug(f"Calculated {len(result.permissions)} permissions for user {user_id} in {duration_ms:.1f}ms")
        return result

    async def _compute(self, user_id: str, company_id: Optional[str]) -> UserEffectivePermissions:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}", code="USER_NOT_FOUND")

        if company_id and user.company_id != company_id:
            raise ValidationError(
                f"User {user_id} does not belong to company {company_id}",
                code="USER_COMPANY_MISMATCH",
            )

        if self.is_super_admin_role(user.role):
            log.debug(f"User {user_id} is super admin - granting all permissions")
            permissions = await self._all_permissions_for_super_admin()
        else:
            role_permissions, direct_permissions = await asyncio.gather(
                self._role_permissions(user),
                self._direct_permissions(user_id),
            )
            permissions = merge_permissions(role_permissions, direct_permissions)

        return UserEffectivePermissions(
            user_id=user_id,
            company_id=company_id or user.company_id,
            permissions=permissions,
            permission_names=[p.name for p in permissions],
            calculated_at=datetime.now(timezone.utc),
            from_cache=False,
            cache_ttl_seconds=self.cache.ttl_seconds,
        )

    async def _all_permissions_for_super_admin(self) -> List[EffectivePermission]:
        catalog = await self.store.list_permissions()
        permissions = [
            EffectivePermission(
                name=permission.name,
                category=permission.category,
                source=PermissionSource.ROLE,
                source_role_name=SUPER_ADMIN_LABEL,
                is_active=True,
            )
            for permission in catalog
        ]
        return sorted(permissions, key=lambda p: (p.category or "", p.name))

    async def _role_permissions(self, user) -> List[EffectivePermission]:
        if not user.role_id:
            return []
        role = user.role
        granted = await self.store.get_role_permissions(user.role_id)
        return [
            EffectivePermission(
                name=permission.name,
                category=permission.category,
                source=PermissionSource.ROLE,
                source_role_id=user.role_id,
                source_role_name=role.name if role is not None else None,
                is_active=True,
            )
            for permission in granted
        ]

    async def _direct_permissions(self, user_id: str) -> List[EffectivePermission]:
        now = datetime.now(timezone.utc)
        permissions = []
        for grant in await self.store.get_direct_grants(user_id):
            if not grant.granted:
                continue
            expires_at = _as_utc(grant.expires_at)
            permissions.append(
                EffectivePermission(
                    name=grant.permission.name,
                    category=grant.permission.category,
                    source=PermissionSource.DIRECT,
                    expires_at=expires_at,
                    is_active=expires_at is None or expires_at > now,
                )
            )
        return permissions

    async def get_effective_permissions(
        self,
        user_id: str,
        company_id: Optional[str] = None,
        force_refresh: bool = False,
    ) -> UserEffectivePermissions:
        """Effective permissions via the cache unless force_refresh is set or caching is disabled."""
        key = CacheKey(USER_PERMISSIONS, user_id, company_id)

        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                log.debug(f"Cache hit for user permissions: {key}")
                return cached.model_copy(update={"from_cache": True})

        result = await self.compute_effective_permissions(user_id, company_id)
        self.cache.put(key, result)
        return result

    # ========================================================================
    # Permission checks
    # ========================================================================

    async def check(
        self,
        user_id: str,
        permission_name: str,
        company_id: Optional[str] = None,
        force_refresh: bool = False,
    ) -> PermissionCheckResult:
        bulk = await self.check_bulk(user_id, [permission_name], company_id, force_refresh)
        return bulk.results[0]

    async def check_bulk(
        self,
        user_id: str,
        permission_names: List[str],
        company_id: Optional[str] = None,
        force_refresh: bool = False,
    ) -> BulkPermissionCheckResult:
        """
        Check several permissions against a single snapshot of the effective set.

        Known errors (NotFound, Validation, Forbidden, sanitized InternalFailure)
        propagate unchanged; anything else becomes a generic InternalFailure.
        """
        start = time.perf_counter()
        try:
            snapshot = await self.get_effective_permissions(user_id, company_id, force_refresh)
        except AppError:
            raise
        except Exception as exc:
            log.exception(f"Error checking permissions {permission_names} for user {user_id}")
            raise InternalFailure("Permission check failed", code="PERMISSION_CHECK_FAILED") from exc

        checked_at = datetime.now(timezone.utc)
        results = []
        for name in permission_names:
            permission = snapshot.get(name)
            results.append(
                PermissionCheckResult(
                    granted=permission is not None,
                    permission_name=name,
                    user_id=user_id,
                    source=permission.source if permission else None,
                    source_role_name=permission.source_role_name if permission else None,
                    checked_at=checked_at,
                    from_cache=snapshot.from_cache,
                )
            )

        granted_count = sum(1 for r in results if r.granted)
        duration_ms = (time.perf_counter() - start) * 1000
        log.debug(
            f"Bulk permission check for user {user_id}: {granted_count}/{len(results)} granted ({duration_ms:.1f}ms)"
        )
        return BulkPermissionCheckResult(
            user_id=user_id,
            results=results,
            total_checked=len(results),
            granted_count=granted_count,
            checked_at=checked_at,
            from_cache=snapshot.from_cache,
        )

    # ========================================================================
    # Target-user access rules
    # ========================================================================

    async def authorize_access(self, target_user_id: str, requesting_user):
        """
        Return the target user if `requesting_user` may read its permissions.

        Allowed: the user itself, an admin of the same company, a cross-company
        admin, or a super admin.
        """
        try:
            target = await self.store.get_user(target_user_id)
        except Exception as exc:
            log.exception(f"Error loading target user {target_user_id}: {sanitize_error_message(exc)}")
            raise InternalFailure(
                "Failed to validate user access",
                code="ACCESS_VALIDATION_FAILED",
            ) from exc

        if target is None:
            raise NotFoundError(f"User not found: {target_user_id}", code="USER_NOT_FOUND")

        role = requesting_user.role
        role_code = role.code if role is not None else None
        same_user = requesting_user.id == target.id
        same_company = requesting_user.company_id == target.company_id

        if (
            same_user
            or (role_code in config.ADMIN_ROLE_CODES and same_company)
            or role_code in config.CROSS_COMPANY_ROLE_CODES
            or self.is_super_admin_role(role)
        ):
            return target

        log.warning(f"User {requesting_user.id} denied access to permissions of user {target_user_id}")
        raise ForbiddenError("You are not authorized to access this resource.", code="FORBIDDEN_ACCESS")

    # ========================================================================
    # Cache management
    # ========================================================================

    async def invalidate_cache(self, request: InvalidateCacheRequest) -> CacheInvalidationResponse:
        """
        Drop cached permissions matching the criteria.

        Company, role and permission criteria are resolved to user ids through
        the store. Checks already in flight may still return the old result.
        """
        start = time.perf_counter()

        if request.invalidate_all:
            count = self.cache.clear()
            log.info(f"Full permission cache invalidation: {count} entries removed")
            return CacheInvalidationResponse(
                invalidated_count=count,
                invalidated_keys=["*"],
                invalidated_at=datetime.now(timezone.utc),
                reason=request.reason or "Full cache invalidation requested",
            )

        user_ids = set()
        if request.user_id:
            user_ids.add(request.user_id)
        try:
            if request.company_id:
                user_ids.update(u.id for u in await self.store.list_users(company_id=request.company_id))
            if request.role_id:
                user_ids.update(u.id for u in await self.store.list_users(role_id=request.role_id))
            if request.permission_name:
                user_ids.update(await self.store.list_user_ids_with_permission(request.permission_name))
        except Exception as exc:
            log.exception("Error resolving users for permission cache invalidation")
            raise InternalFailure(
                "Failed to invalidate permission cache", code="CACHE_INVALIDATE_FAILED"
            ) from exc

        removed = self.cache.invalidate_users(user_ids)
        if request.permission_name:
            name = request.permission_name
            removed += self.cache.invalidate_where(
                lambda _key, value: name in getattr(value, "permission_names", ())
            )

        duration_ms = (time.perf_counter() - start) * 1000
        log.info(
            f"Cache invalidation completed: {len(removed)} keys invalidated in {duration_ms:.1f}ms. "
            f"Reason: {request.reason or 'Not specified'}"
        )
        return CacheInvalidationResponse(
            invalidated_count=len(removed),
            invalidated_keys=[str(key) for key in removed],
            invalidated_at=datetime.now(timezone.utc),
            reason=request.reason,
        )

    async def warmup_cache(self, request: CacheWarmupRequest) -> CacheWarmupResponse:
        """Recompute and cache permissions for the selected users. Per-user failures are reported, not raised."""
        start = time.perf_counter()
        errors: List[str] = []

        try:
            if request.user_ids:
                users = await self.store.list_users(user_ids=request.user_ids)
                found = {u.id for u in users}
                errors.extend(f"User not found: {user_id}" for user_id in request.user_ids if user_id not in found)
            elif request.company_id:
                users = await self.store.list_users(company_id=request.company_id)
            elif request.role_id:
                users = await self.store.list_users(role_id=request.role_id)
            elif request.warmup_all:
                users = await self.store.list_users(limit=WARMUP_ALL_LIMIT)
            else:
                users = []
        except Exception as exc:
            log.exception("Error resolving users for permission cache warmup")
            raise InternalFailure("Failed to warm up permission cache", code="CACHE_WARMUP_FAILED") from exc

        semaphore = asyncio.Semaphore(WARMUP_CONCURRENCY)

        async def warm(user) -> bool:
            async with semaphore:
                try:
                    await self.get_effective_permissions(user.id, user.company_id, force_refresh=True)
                    return True
                except Exception as exc:
                    message = f"Failed to warm up cache for user {user.id}: {sanitize_error_message(exc)}"
                    log.warning(message)
                    errors.append(message)
                    return False

        outcomes = await asyncio.gather(*(warm(user) for user in users))
        warmed = sum(1 for ok in outcomes if ok)
        duration_ms = int((time.perf_counter() - start) * 1000)

        log.info(f"Cache warmup completed: {warmed}/{len(users)} users processed in {duration_ms}ms")
        return CacheWarmupResponse(
            warmed_count=warmed,
            users_processed=len(users),
            duration_ms=duration_ms,
            completed_at=datetime.now(timezone.utc),
            errors=errors,
        )

    async def get_cache_statistics(self) -> CacheStatistics:
        return self.cache.statistics()
