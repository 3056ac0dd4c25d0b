from collections import Counter
from types import SimpleNamespace

import pytest

from tenant_rbac.features.permissions.cache import PermissionCache
from tenant_rbac.features.permissions.service import PermissionsService


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """In-memory stand-in for PermissionStore."""

    def __init__(self):
        self.users = {}
        self.roles = {}
        self.permissions = {}
        self.role_grants = {}
        self.grants = []
        self.calls = Counter()
        self.error = None

    # -- setup helpers -------------------------------------------------------

    def add_permission(self, name, category="general"):
        self.permissions[name] = SimpleNamespace(id=f"perm-{name}", name=name, category=category)
        return self.permissions[name]

    def add_role(self, role_id, name, code, permissions=()):
        for permission in permissions:
            if permission not in self.permissions:
                self.add_permission(permission)
        self.roles[role_id] = SimpleNamespace(id=role_id, name=name, code=code)
        self.role_grants[role_id] = list(permissions)
        return self.roles[role_id]

    def add_user(self, user_id, company_id="c1", role_id=None):
        self.users[user_id] = SimpleNamespace(id=user_id, company_id=company_id, role_id=role_id)
        return self.principal(user_id)

    def grant(self, user_id, permission, granted=True, expires_at=None, category="general"):
        if permission not in self.permissions:
            self.add_permission(permission, category)
        self.grants.append(
            SimpleNamespace(
                user_id=user_id,
                permission=self.permissions[permission],
                granted=granted,
                expires_at=expires_at,
            )
        )

    def principal(self, user_id):
        user = self.users[user_id]
        return SimpleNamespace(
            id=user.id,
            company_id=user.company_id,
            role_id=user.role_id,
            role=self.roles.get(user.role_id),
        )

    def _track(self, name):
        self.calls[name] += 1
        if self.error is not None:
            raise self.error

    # -- PermissionStore interface ----------------------------------------------

    async def get_user(self, user_id):
        self._track("get_user")
        if user_id not in self.users:
            return None
        return self.principal(user_id)

    async def get_role_permissions(self, role_id):
        self._track("get_role_permissions")
        return [self.permissions[name] for name in self.role_grants.get(role_id, [])]

    async def get_direct_grants(self, user_id):
        self._track("get_direct_grants")
        return [g for g in self.grants if g.user_id == user_id and g.granted]

    async def list_permissions(self):
        self._track("list_permissions")
        return list(self.permissions.values())

    async def list_users(self, user_ids=None, company_id=None, role_id=None, limit=None):
        self._track("list_users")
        users = list(self.users.values())
        if user_ids is not None:
            users = [u for u in users if u.id in user_ids]
        if company_id:
            users = [u for u in users if u.company_id == company_id]
        if role_id:
            users = [u for u in users if u.role_id == role_id]
        return users[:limit] if limit else users

    async def list_user_ids_with_permission(self, permission_name):
        self._track("list_user_ids_with_permission")
        holders = {u.id for u in self.users.values() if permission_name in self.role_grants.get(u.role_id, [])}
        holders.update(g.user_id for g in self.grants if g.granted and g.permission.name == permission_name)
        return sorted(holders)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = FakeStore()
    store.add_role("r-super", "Super Admin", "super_admin")
    store.add_role("r-vendor-admin", "Vendor Admin", "vendor_admin", ["VIEW_PETITION"])
    store.add_role("r-vendor-user", "Vendor User", "vendor_user", ["VIEW_PETITION", "VIEW_TEAM"])
    store.add_permission("CREATE_PETITION", "petitions")
    store.add_permission("MANAGE_PERMISSION_CACHE", "permissions")
    store.add_permission("VIEW_PERMISSION_CACHE_STATS", "permissions")
    store.add_user("u1", "c1", "r-vendor-admin")
    store.add_user("u2", "c1", "r-super")
    store.add_user("u3", "c1", "r-vendor-user")
    store.add_user("u4", "c2", "r-vendor-user")
    store.add_user("u5", "c2")
    return store


@pytest.fixture
def cache(clock):
    return PermissionCache(ttl_seconds=60, max_entries=100, enabled=True, clock=clock)


@pytest.fixture
def service(store, cache):
    return PermissionsService(store, cache)
