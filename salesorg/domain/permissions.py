from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_HIERARCHY_READ = "hierarchy.read"
PERM_HIERARCHY_WRITE = "hierarchy.write"
PERM_REGISTRY_READ = "registry.read"
PERM_REGISTRY_WRITE = "registry.write"


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
