# securefms/rbac.py
"""Role-based access control with ownership scoping.

Every role/permission question in the service is answered here. Callers pass
a ``models.User`` (with its ``role`` loaded); role names are parsed once into
``RoleName`` and never compared as raw strings at call sites.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from securefms.errors import AuthorizationError, ValidationError

logger = logging.getLogger(__name__)


class RoleName(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class Permission(str, Enum):
    UPLOAD_FILE = "upload_file"
    DELETE_OWN_FILE = "delete_own_file"
    DELETE_ANY_FILE = "delete_any_file"
    VIEW_USERS = "view_users"
    VIEW_ALL_FILES = "view_all_files"
    VIEW_LOGS = "view_logs"


# Role -> Permissions mapping
ROLE_PERMISSIONS: Dict[RoleName, FrozenSet[Permission]] = {
    RoleName.USER: frozenset({
        Permission.UPLOAD_FILE,
        Permission.DELETE_OWN_FILE,
    }),
    RoleName.ADMIN: frozenset(Permission),
    RoleName.SUPERADMIN: frozenset(Permission),
}

ROLE_DESCRIPTIONS = {
    RoleName.USER: "Regular user: manages own files",
    RoleName.ADMIN: "Administrator: manages the users it created",
    RoleName.SUPERADMIN: "Super administrator: full access",
}

ADMINISTRATIVE_ROLES = frozenset({RoleName.ADMIN, RoleName.SUPERADMIN})


def parse_role(value) -> RoleName:
    if isinstance(value, RoleName):
        return value
    try:
        return RoleName(str(value).strip().lower())
    except ValueError:
        raise ValidationError("Invalid role") from None


def parse_permissions(values: Iterable[str]) -> FrozenSet[Permission]:
    try:
        return frozenset(Permission(v) for v in values)
    except ValueError:
        raise ValidationError("Invalid permission detected") from None


class RBACResolver:
    def __init__(self, role_permissions: Optional[Dict[RoleName, FrozenSet[Permission]]] = None):
        self.role_permissions = role_permissions or ROLE_PERMISSIONS

    def role_of(self, principal) -> RoleName:
        return parse_role(principal.role.name)

    def permissions_for(self, role) -> FrozenSet[Permission]:
        return self.role_permissions.get(parse_role(role), frozenset())

    def authorize(self, principal, permission) -> bool:
        if principal is None or not principal.is_active:
            return False
        return Permission(permission) in self.permissions_for(self.role_of(principal))

    def require(self, principal, permission) -> None:
        if not self.authorize(principal, permission):
            logger.info(
                "Denied %s to user %s", Permission(permission).value,
                getattr(principal, "id", None))
            raise AuthorizationError(
                f"You do not have permission: {Permission(permission).value}")

    def can_act_on(self, principal, owner_id=None, creator_id=None) -> bool:
        """Ownership scope for administrative and per-resource operations.

        superadmin: anything. admin: only resources it created.
        user: only resources it owns.
        """
        if principal is None or not principal.is_active:
            return False
        role = self.role_of(principal)
        if role is RoleName.SUPERADMIN:
            return True
        if role is RoleName.ADMIN:
            return creator_id is not None and creator_id == principal.id
        return owner_id is not None and owner_id == principal.id

    def require_scope(self, principal, owner_id=None, creator_id=None) -> None:
        if not self.can_act_on(principal, owner_id=owner_id, creator_id=creator_id):
            raise AuthorizationError("Access denied: outside your scope")

    def is_administrative(self, principal) -> bool:
        return self.role_of(principal) in ADMINISTRATIVE_ROLES

    def require_admin(self, principal) -> None:
        self.require(principal, Permission.VIEW_USERS)
        if not self.is_administrative(principal):
            raise AuthorizationError("Not authorized as admin")

    def require_role_assignment(self, actor, target_role) -> RoleName:
        """Admins may only hand out the base role; superadmins any role."""
        target = parse_role(target_role)
        actor_role = self.role_of(actor)
        if actor_role is RoleName.SUPERADMIN:
            return target
        if actor_role is RoleName.ADMIN and target is RoleName.USER:
            return target
        raise AuthorizationError(
            "Access denied: you can only assign the user role"
            if actor_role is RoleName.ADMIN else "Access denied")


rbac = RBACResolver()
