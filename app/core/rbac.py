# app/core/rbac.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import Any, Dict, Mapping, Optional

from app.core.config import settings
from app.core.errors import PermissionDenied, PolicyViolation


class Role(IntEnum):
    USER = 1
    ADMIN = 2
    SUPER_ADMIN = 3

    @property
    def slug(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "str | int | Role") -> "Role":
        if isinstance(value, Role):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown role: {value}") from None


PERMISSION_NAMES = ("read", "write", "modify", "delete")


@dataclass(frozen=True)
class Permissions:
    read: bool = True
    write: bool = False
    modify: bool = False
    delete: bool = False

    @classmethod
    def for_role(cls, role: Role) -> "Permissions":
        if role >= Role.ADMIN:
            return cls(read=True, write=True, modify=True, delete=True)
        return cls()

    @classmethod
    def normalize(cls, raw: Optional[Mapping[str, Any]], role: Role = Role.USER) -> "Permissions":
        """Coerce a stored or submitted payload to the four-flag shape.

        Missing flags take the role default; unknown keys are dropped.
        ``None`` yields the role default outright.
        """
        base = cls.for_role(role)
        if not raw:
            return base
        values = {name: bool(raw.get(name, getattr(base, name))) for name in PERMISSION_NAMES}
        return cls(**values)

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)

    def allows(self, perm: str) -> bool:
        if perm not in PERMISSION_NAMES:
            raise ValueError(f"Unknown permission: {perm}")
        return bool(getattr(self, perm))


# ---------------------------------------------------------------------------
# Reserved super-admin policy. Kept apart from the ordinary role comparison.
# ---------------------------------------------------------------------------
def is_reserved_super_admin(email: Optional[str]) -> bool:
    return bool(email) and email.strip().lower() == settings.SUPER_ADMIN_EMAIL


def effective_role(user) -> Role:
    if is_reserved_super_admin(user.email):
        return Role.SUPER_ADMIN
    return Role.parse(user.role)


def effective_permissions(user) -> Permissions:
    role = effective_role(user)
    if role >= Role.ADMIN:
        return Permissions.for_role(role)
    return Permissions.normalize(user.permissions, role)


def has_permission(user, perm: str) -> bool:
    return effective_permissions(user).allows(perm)


def ensure_role_at_least(user, min_role: Role) -> None:
    if effective_role(user) < min_role:
        raise PermissionDenied(min_role.slug, f"Requires at least the '{min_role.slug}' role")


def ensure_permission(user, perm: str) -> None:
    if not has_permission(user, perm):
        raise PermissionDenied(perm)


# ---------------------------------------------------------------------------
# Rules for actions that target another account
# ---------------------------------------------------------------------------
def ensure_can_manage(actor, target, *, new_role: Optional[Role] = None,
                      deactivate: bool = False, delete: bool = False) -> None:
    """Raise PolicyViolation when ``actor`` may not apply the change to ``target``."""
    is_self = actor.id == target.id

    if is_reserved_super_admin(target.email):
        if delete or deactivate:
            raise PolicyViolation("The reserved super-admin account cannot be disabled or deleted")
        if not is_self:
            raise PolicyViolation("The reserved super-admin account can only be modified by itself")
        if new_role is not None and new_role != Role.SUPER_ADMIN:
            raise PolicyViolation("The reserved super-admin account cannot be demoted")

    if is_self:
        if delete:
            raise PolicyViolation("You cannot delete your own account")
        if deactivate:
            raise PolicyViolation("You cannot deactivate your own account")
        if new_role is not None and new_role < effective_role(actor):
            raise PolicyViolation("You cannot demote yourself")

    actor_role = effective_role(actor)
    if not is_self and actor_role < effective_role(target):
        raise PolicyViolation("You cannot modify a user with a higher role than yours")
    if new_role is not None and new_role > actor_role:
        raise PolicyViolation("You cannot grant a role higher than your own")
