"""
Seed script to populate the permission catalog and system roles.

Run this script after database initialization to create:
- The permission catalog (name, category, description)
- System roles, including the super admin role
- Initial role-permission assignments

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_rbac.core.database.engine import get_db, init_db
from tenant_rbac.features.permissions.models import Permission, Role
from tenant_rbac.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # (name, category, description)
    ("VIEW_PETITION", "petitions", "View petitions"),
    ("CREATE_PETITION", "petitions", "Create petitions"),
    ("UPDATE_PETITION", "petitions", "Update petitions"),
    ("DELETE_PETITION", "petitions", "Delete petitions"),
    ("MANAGE_PETITIONS", "petitions", "Assign and reassign petitions"),

    ("VIEW_TEAM", "teams", "View teams"),
    ("CREATE_TEAM", "teams", "Create teams"),
    ("UPDATE_TEAM", "teams", "Update teams and their members"),
    ("DELETE_TEAM", "teams", "Delete teams"),

    ("VIEW_COMPANY", "companies", "View company details"),
    ("UPDATE_COMPANY", "companies", "Update company details"),

    ("VIEW_USERS", "users", "View users of the company"),
    ("MANAGE_USERS", "users", "Invite, update and deactivate users"),

    ("VIEW_PERMISSIONS", "permissions", "View user permissions"),
    ("MANAGE_PERMISSION_CACHE", "permissions", "Invalidate and warm up the permission cache"),
    ("VIEW_PERMISSION_CACHE_STATS", "permissions", "View permission cache statistics"),
]


DEFAULT_ROLES = {
    # Super admin permissions are implicit; nothing is enumerated
    "super_admin": {
        "name": "Super Admin",
        "description": "Ultimate system administrator with all permissions",
        "permissions": [],
    },
    "acme_admin": {
        "name": "Acme Admin",
        "description": "Platform operator with access to every company",
        "permissions": [
            "VIEW_PETITION", "VIEW_TEAM", "VIEW_COMPANY", "UPDATE_COMPANY",
            "VIEW_USERS", "MANAGE_USERS", "VIEW_PERMISSIONS",
            "MANAGE_PERMISSION_CACHE", "VIEW_PERMISSION_CACHE_STATS",
        ],
    },
    "vendor_admin": {
        "name": "Vendor Admin",
        "description": "Company administrator",
        "permissions": [
            "VIEW_PETITION", "CREATE_PETITION", "UPDATE_PETITION", "DELETE_PETITION", "MANAGE_PETITIONS",
            "VIEW_TEAM", "CREATE_TEAM", "UPDATE_TEAM", "DELETE_TEAM",
            "VIEW_COMPANY", "UPDATE_COMPANY",
            "VIEW_USERS", "MANAGE_USERS", "VIEW_PERMISSIONS",
        ],
    },
    "vendor_manager": {
        "name": "Vendor Manager",
        "description": "Team manager within a company",
        "permissions": [
            "VIEW_PETITION", "CREATE_PETITION", "UPDATE_PETITION",
            "VIEW_TEAM", "UPDATE_TEAM",
            "VIEW_COMPANY", "VIEW_USERS",
        ],
    },
    "vendor_user": {
        "name": "Vendor User",
        "description": "Standard company member",
        "permissions": ["VIEW_PETITION", "VIEW_TEAM", "VIEW_COMPANY"],
    },
}


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create the permission catalog.

    Returns:
        Dictionary mapping permission names to Permission objects
    """
    log.info("Creating default permissions...")
    permissions_map = {}

    for name, category, description in DEFAULT_PERMISSIONS:
        result = await db.execute(select(Permission).where(Permission.name == name))
        existing = result.scalars().first()

        if existing:
            log.debug(f"Permission '{name}' already exists, skipping")
            permissions_map[name] = existing
            continue

        permission = Permission(name=name, category=category, description=description)
        db.add(permission)
        permissions_map[name] = permission
        log.info(f"Created permission: {name}")

    await db.commit()
    log.info(f"Permission catalog has {len(permissions_map)} entries")
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]):
    """Create system roles and assign their permissions."""
    log.info("Creating default roles...")

    for code, role_config in DEFAULT_ROLES.items():
        result = await db.execute(select(Role).where(Role.code == code))
        if result.scalars().first():
            log.debug(f"Role '{code}' already exists, skipping")
            continue

        role_permissions = []
        for perm_name in role_config["permissions"]:
            if perm_name in permissions_map:
                role_permissions.append(permissions_map[perm_name])
            else:
                log.warning(f"Permission '{perm_name}' not found for role '{code}'")

        role = Role(
            name=role_config["name"],
            code=code,
            description=role_config["description"],
            permissions=role_permissions,
        )
        db.add(role)
        log.info(f"Created role '{code}' with {len(role_permissions)} permissions")

    await db.commit()
    log.info("Default roles created successfully")


async def main():
    """Seed the permission catalog and roles."""
    log.info("Starting permission seeding...")
    await init_db()

    async for db in get_db():
        try:
            permissions_map = await seed_permissions(db)
            await seed_roles(db, permissions_map)
            log.info("Permission seeding completed successfully!")
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
