"""
Read-only data access for the permission engine.

Every method opens its own session from the session factory, so callers may
run independent reads concurrently with asyncio.gather (an AsyncSession must
never be shared between concurrent tasks).
"""
from typing import List, Optional, Sequence
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from tenant_rbac.features.users.models import User
from tenant_rbac.features.permissions.models import (
    Permission,
    Role,
    UserPermission,
    role_permissions,
)


class PermissionStore:
    """SQLAlchemy-backed permission store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user(self, user_id: str) -> Optional[User]:
        """Return the user with its role (and the role's permissions) loaded."""
        async with self._session_factory() as session:
            stmt = (
                select(User)
                .where(User.id == user_id)
                .options(selectinload(User.role).selectinload(Role.permissions))
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def get_role_permissions(self, role_id: str) -> List[Permission]:
        async with self._session_factory() as session:
            stmt = (
                select(Permission)
                .join(role_permissions, role_permissions.c.permission_id == Permission.id)
                .where(role_permissions.c.role_id == role_id)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_direct_grants(self, user_id: str) -> List[UserPermission]:
        """Direct grants with granted=True, permission eagerly loaded."""
        async with self._session_factory() as session:
            stmt = (
                select(UserPermission)
                .where(UserPermission.user_id == user_id, UserPermission.granted.is_(True))
                .options(selectinload(UserPermission.permission))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_permissions(self) -> List[Permission]:
        """The full permission catalog."""
        async with self._session_factory() as session:
            result = await session.execute(select(Permission))
            return list(result.scalars().all())

    async def list_users(
        self,
        user_ids: Optional[Sequence[str]] = None,
        company_id: Optional[str] = None,
        role_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[User]:
        async with self._session_factory() as session:
            stmt = select(User)
            if user_ids is not None:
                stmt = stmt.where(User.id.in_(list(user_ids)))
            if company_id:
                stmt = stmt.where(User.company_id == company_id)
            if role_id:
                stmt = stmt.where(User.role_id == role_id)
            if limit:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_user_ids_with_permission(self, permission_name: str) -> List[str]:
        """Users holding `permission_name` through their role or a direct grant."""
        async with self._session_factory() as session:
            via_role = (
                select(role_permissions.c.role_id)
                .join(Permission, Permission.id == role_permissions.c.permission_id)
                .where(Permission.name == permission_name)
            )
            via_grant = (
                select(UserPermission.user_id)
                .join(Permission, Permission.id == UserPermission.permission_id)
                .where(Permission.name == permission_name)
            )
            stmt = select(User.id).where(
                or_(User.role_id.in_(via_role), User.id.in_(via_grant))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
