"""Role model for admin access control."""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"
    SUPER_ADMIN = "super_admin"
    OWNER = "owner"


ADMIN_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.SUPERADMIN, Role.SUPER_ADMIN, Role.OWNER})


def parse_roles(raw: Iterable[str]) -> frozenset[Role]:
    """Known roles only; unknown claim values are dropped."""
    roles = set()
    for value in raw:
        try:
            roles.add(Role(str(value).strip().lower()))
        except ValueError:
            continue
    return frozenset(roles)


def has_admin_role(roles: Iterable[Role]) -> bool:
    """Default-deny: at least one admin-class role is required."""
    return any(r in ADMIN_ROLES for r in roles)
