# Overview: Role permissions and location-scope checks shared by routes and services.

"""
Permission and scope checks.

Routes gate on permission codes (DEFAULT_ROLE_PERMISSIONS); services then
enforce the finer rules a permission code cannot express: which role may
perform a transition, and which location the caller is scoped to.

SCOPE RULES:
- admin is not bound to a location
- every other role acts only on its own location
"""

from __future__ import annotations

from ..errors import Forbidden, NotFound, OutOfScope
from ..extensions import db
from ..models import User
from ..permissions import ALL_PERMISSION_CODES, DEFAULT_ROLE_PERMISSIONS, ROLE_ADMIN, ROLE_MANAGER, ROLE_USER


LOCATION_BOUND_ROLES = (ROLE_MANAGER, ROLE_USER)


class PermissionDeniedError(Exception):
    """Raised when a user lacks a required permission code."""
    pass


def get_role_permissions(role: str | None) -> set[str]:
    return set(DEFAULT_ROLE_PERMISSIONS.get(role or "", []))


def get_user_permissions(user: User) -> set[str]:
    if not user or not user.is_active:
        return set()
    return get_role_permissions(user.role)


def user_has_permission(user: User, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user)


def require_permission(user: User, permission_code: str) -> None:
    if permission_code not in ALL_PERMISSION_CODES:
        raise PermissionDeniedError(f"Unknown permission: {permission_code}")
    if not user_has_permission(user, permission_code):
        raise PermissionDeniedError(
            f"Role {user.role if user else None!r} lacks permission {permission_code}"
        )


def get_actor(user_id: int) -> User:
    """Load the acting user; unknown or inactive users cannot act."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound(f"User {user_id} not found")
    if not user.is_active:
        raise Forbidden(f"User {user.username} is not active")
    return user


def require_role(user: User, *roles: str, action: str = "perform this action") -> None:
    if user.role not in roles:
        raise Forbidden(f"Role {user.role!r} cannot {action}")


def is_admin(user: User) -> bool:
    return user.role == ROLE_ADMIN


def ensure_location_scope(user: User, location_id: int) -> None:
    """Raise OutOfScope unless the user may act on location_id."""
    if is_admin(user):
        return
    if user.location_id is None or user.location_id != location_id:
        raise OutOfScope(f"User {user.username} is not scoped to location {location_id}")


def visible_location_ids(user: User) -> list[int] | None:
    """
    Locations whose requests the user may list. None means unrestricted.

    Managers and counters are bound to their location; organisation-level
    roles see every location.
    """
    if user.role not in LOCATION_BOUND_ROLES:
        return None
    return [user.location_id] if user.location_id is not None else []
