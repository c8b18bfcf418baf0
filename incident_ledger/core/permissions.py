"""Role based access control.

The role table is static: a role either holds a permission or it does not.
Ownership refinements (editors may only touch what they created) layer on
top of it. Every lookup is fail-closed, so an unknown role or permission
is simply denied.
"""

import logging
from enum import Enum
from typing import Iterable, Protocol
from uuid import UUID

from ..models import UserRole
from .errors import AuthorizationDenied

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    VIEW_INCIDENTS = "view_incidents"
    CREATE_INCIDENTS = "create_incidents"
    EDIT_INCIDENTS = "edit_incidents"
    DELETE_INCIDENTS = "delete_incidents"
    VIEW_TAGS = "view_tags"
    MANAGE_TAGS = "manage_tags"
    VIEW_TEMPLATES = "view_templates"
    MANAGE_TEMPLATES = "manage_templates"
    VIEW_POSTMORTEMS = "view_postmortems"
    MANAGE_POSTMORTEMS = "manage_postmortems"
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"
    VIEW_STATS = "view_stats"
    EXPORT_DATA = "export_data"


ROLE_PERMISSIONS: dict[UserRole, frozenset[Permission]] = {
    UserRole.ADMIN: frozenset(Permission),
    UserRole.EDITOR: frozenset(Permission) - {Permission.VIEW_USERS, Permission.MANAGE_USERS},
    UserRole.VIEWER: frozenset({
        Permission.VIEW_INCIDENTS,
        Permission.VIEW_TAGS,
        Permission.VIEW_TEMPLATES,
        Permission.VIEW_POSTMORTEMS,
        Permission.VIEW_STATS,
    }),
}


class Principal(Protocol):
    """Anything carrying an id and a role claim (a User row, a request context)."""

    id: UUID
    role: UserRole | str


def _coerce_role(role: UserRole | str | None) -> UserRole | None:
    try:
        return UserRole(role)
    except ValueError:
        return None


def _coerce_permission(permission: Permission | str) -> Permission | None:
    try:
        return Permission(permission)
    except ValueError:
        return None


# =============================================================================
# FLAT CHECKS
# =============================================================================


def has_permission(role: UserRole | str | None, permission: Permission | str) -> bool:
    """Return True iff ``role`` holds ``permission``."""
    resolved_role = _coerce_role(role)
    resolved_permission = _coerce_permission(permission)
    if resolved_role is None or resolved_permission is None:
        return False
    return resolved_permission in ROLE_PERMISSIONS[resolved_role]


def has_any_permission(role: UserRole | str | None, permissions: Iterable[Permission | str]) -> bool:
    return any(has_permission(role, p) for p in permissions)


def has_all_permissions(role: UserRole | str | None, permissions: Iterable[Permission | str]) -> bool:
    # An empty requirement list grants nothing
    permissions = list(permissions)
    return bool(permissions) and all(has_permission(role, p) for p in permissions)


# =============================================================================
# OWNERSHIP-AWARE CHECKS
# =============================================================================


def can_edit_incident(user: Principal, incident) -> bool:
    role = _coerce_role(user.role)
    if role == UserRole.ADMIN:
        return True
    return role == UserRole.EDITOR and incident.creator_id == user.id


def can_delete_incident(user: Principal) -> bool:
    return _coerce_role(user.role) == UserRole.ADMIN


def can_edit_post_mortem(user: Principal, post_mortem) -> bool:
    role = _coerce_role(user.role)
    if role == UserRole.ADMIN:
        return True
    return role == UserRole.EDITOR and post_mortem.author_id == user.id


def can_delete_attachment(user: Principal, attachment) -> bool:
    return _coerce_role(user.role) == UserRole.ADMIN or attachment.uploader_id == user.id


def can_view_audit_logs(user: Principal) -> bool:
    return _coerce_role(user.role) == UserRole.ADMIN


def is_admin(user: Principal) -> bool:
    return _coerce_role(user.role) == UserRole.ADMIN


# =============================================================================
# ENFORCEMENT
# =============================================================================


def require_permission(user: Principal, permission: Permission) -> None:
    """Raise AuthorizationDenied unless ``user`` holds ``permission``."""
    if not has_permission(user.role, permission):
        logger.warning(f"Permission denied: user={user.id} role={user.role} permission={permission.value}")
        raise AuthorizationDenied(
            f"Role '{getattr(user.role, 'value', user.role)}' lacks permission '{permission.value}'",
            details={"permission": permission.value},
        )


def require(allowed: bool, user: Principal, action: str) -> None:
    """Raise AuthorizationDenied when an ownership-aware check failed."""
    if not allowed:
        logger.warning(f"Action denied: user={user.id} role={user.role} action={action}")
        raise AuthorizationDenied(f"Not allowed to {action}", details={"action": action})
