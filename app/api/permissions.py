# app/api/permissions.py
from typing import Callable
from fastapi import Depends
from app.api.deps import get_current_user
from app.core.rbac import PERMISSION_NAMES, Role, ensure_permission, ensure_role_at_least
from app.models.user import User


def require_role_at_least(min_role: Role) -> Callable[[User], User]:
    """
    Use: Depends(require_role_at_least(Role.ADMIN))
    Allows min_role and everything above it in the hierarchy.
    """
    def _checker(user: User = Depends(get_current_user)) -> User:
        ensure_role_at_least(user, min_role)
        return user

    return _checker


def require_permission(perm: str) -> Callable[[User], User]:
    """
    Use: Depends(require_permission("delete"))
    Reads permissions from the current user row on every request.
    Admin and super_admin pass every permission.
    """
    if perm not in PERMISSION_NAMES:
        raise RuntimeError(f"Unknown permission: {perm}")

    def _checker(user: User = Depends(get_current_user)) -> User:
        ensure_permission(user, perm)
        return user

    return _checker
