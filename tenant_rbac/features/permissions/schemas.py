"""
Pydantic schemas for permission evaluation and cache management.

Effective permissions are computed, never persisted; these models are what
the service caches and what the routes return.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator


# ============================================================================
# Effective Permission Schemas
# ============================================================================

class PermissionSource(str, Enum):
    """How a permission was granted."""
    ROLE = "ROLE"
    DIRECT = "DIRECT"
    SYSTEM = "SYSTEM"


class EffectivePermission(BaseModel):
    """One entry of a user's effective permission set."""
    name: str
    category: Optional[str] = None
    source: PermissionSource
    source_role_id: Optional[str] = None
    source_role_name: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True


class UserEffectivePermissions(BaseModel):
    """All effective permissions for a (user, company) pair."""
    user_id: str
    company_id: str
    permissions: List[EffectivePermission] = []
    permission_names: List[str] = []
    calculated_at: datetime
    from_cache: bool = False
    cache_ttl_seconds: int

    def get(self, name: str) -> Optional[EffectivePermission]:
        """Return the active entry for `name`, or None."""
        for permission in self.permissions:
            if permission.name == name and permission.is_active:
                return permission
        return None


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckResult(BaseModel):
    """Result of checking a single permission."""
    granted: bool
    permission_name: str
    user_id: str
    source: Optional[PermissionSource] = None
    source_role_name: Optional[str] = None
    checked_at: datetime
    from_cache: bool = False


class BulkPermissionCheckResult(BaseModel):
    """Result of checking several permissions against one snapshot."""
    user_id: str
    results: List[PermissionCheckResult]
    total_checked: int
    granted_count: int
    checked_at: datetime
    from_cache: bool = False


class PermissionCheckRequest(BaseModel):
    """Schema for checking one (`permission_name`) or many (`permission_names`) permissions."""
    permission_name: Optional[str] = Field(None, min_length=1, max_length=100)
    permission_names: Optional[List[str]] = Field(None, min_length=1)
    company_id: Optional[str] = Field(None, description="Company context (defaults to the user's company)")


class SuperAdminStatus(BaseModel):
    user_id: str
    is_super_admin: bool
    method: str = Field(..., description="'role_based' or 'none'")
    checked_at: datetime


# ============================================================================
# Cache Management Schemas
# ============================================================================

class InvalidateCacheRequest(BaseModel):
    """Cache invalidation criteria. Criteria other than invalidate_all are combined."""
    user_id: Optional[str] = None
    company_id: Optional[str] = None
    role_id: Optional[str] = None
    permission_name: Optional[str] = None
    invalidate_all: bool = False
    reason: Optional[str] = Field(None, max_length=500)


class CacheInvalidationResponse(BaseModel):
    invalidated_count: int
    invalidated_keys: List[str]
    invalidated_at: datetime
    reason: Optional[str] = None


class CacheWarmupRequest(BaseModel):
    """Cache warmup criteria. The first of user_ids, company_id, role_id, warmup_all wins."""
    user_ids: Optional[List[str]] = None
    company_id: Optional[str] = None
    role_id: Optional[str] = None
    warmup_all: bool = False

    @model_validator(mode="after")
    def at_least_one_criterion(self) -> "CacheWarmupRequest":
        if not (self.user_ids or self.company_id or self.role_id or self.warmup_all):
            raise ValueError("Provide user_ids, company_id, role_id or warmup_all")
        return self


class CacheWarmupResponse(BaseModel):
    warmed_count: int
    users_processed: int
    duration_ms: int
    completed_at: datetime
    errors: List[str] = []


class CacheStatistics(BaseModel):
    total_entries: int
    active_entries: int
    expired_entries: int
    total_hits: int
    total_misses: int
    hit_ratio: float
    memory_usage_bytes: int
    average_entry_size: float
    calculated_at: datetime


class CacheConfig(BaseModel):
    ttl_seconds: int
    max_entries: int
    enabled: bool


# ============================================================================
# Access Decision
# ============================================================================

class AccessDecision(BaseModel):
    """Outcome of the access guard. `missing` keeps the declared order."""
    allowed: bool
    reason: Optional[str] = None
    required: List[str] = []
    missing: List[str] = []
