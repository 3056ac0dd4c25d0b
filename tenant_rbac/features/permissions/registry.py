"""
Static registration of required permissions.

Permissions are declared per scope (typically a router or resource) and per
operation within that scope, then combined by the access guard:

    registry.declare("petitions", "VIEW_PETITION")
    registry.declare("petitions", "CREATE_PETITION", operation="create")

    registry.required_permissions("petitions", "create")
    # ['VIEW_PETITION', 'CREATE_PETITION'] - both must be granted
"""
from typing import Dict, List, Optional, Tuple


class PermissionRegistry:
    """Maps (scope, operation) to declared permission names, in declaration order."""

    def __init__(self):
        self._declarations: Dict[Tuple[str, Optional[str]], List[str]] = {}

    def declare(self, scope: str, *permissions: str, operation: Optional[str] = None) -> None:
        """Add permissions to a scope (operation=None) or to one operation of it."""
        self._declarations.setdefault((scope, operation), []).extend(permissions)

    def scope_permissions(self, scope: str) -> List[str]:
        return list(self._declarations.get((scope, None), []))

    def operation_permissions(self, scope: str, operation: Optional[str]) -> List[str]:
        if operation is None:
            return []
        return list(self._declarations.get((scope, operation), []))

    def required_permissions(self, scope: str, operation: Optional[str] = None) -> List[str]:
        """Scope permissions followed by operation permissions. Duplicates are kept."""
        return self.scope_permissions(scope) + self.operation_permissions(scope, operation)


# Declarations for the routes in this package
registry = PermissionRegistry()
