"""Credential store: the only writer of ``users`` rows."""
from typing import Any, Dict, Mapping, Optional
from sqlalchemy.orm import Session
from sqlalchemy import delete, func, select, update
from app.crud.base import CRUDBase
from app.core.errors import PolicyViolation
from app.core.rbac import Permissions, Role, is_reserved_super_admin
from app.core.security_password import hash_password
from app.models.otp import OneTimeCode, OtpAttempt
from app.models.refresh_token import RefreshToken
from app.models.security_event import SecurityEvent
from app.models.user import User

UPDATABLE_FIELDS = frozenset({"name", "email", "role", "is_active", "password_hash", "permissions"})


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class CRUDUser(CRUDBase[User]):
    def find_by_email(self, db: Session, email: str) -> Optional[User]:
        key = normalize_email(email)
        if not key:
            return None
        return db.execute(select(User).where(func.lower(User.email) == key)).scalar_one_or_none()

    def find_by_id(self, db: Session, user_id: int) -> Optional[User]:
        return self.get(db, user_id)

    def create(self, db: Session, *, name: str, email: str, password: str,
               role: Role = Role.USER, permissions: Optional[Mapping[str, Any]] = None,
               created_by: Optional[int] = None, is_active: bool = True) -> User:
        user = User(
            name=name.strip(),
            email=normalize_email(email),
            password_hash=hash_password(password),
            role=role.slug,
            permissions=Permissions.normalize(permissions, role).to_dict(),
            is_active=is_active,
            created_by=created_by,
        )
        db.add(user); db.commit(); db.refresh(user)
        return user

    def update(self, db: Session, user_id: int, fields: Mapping[str, Any]) -> Optional[User]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        user = db.get(User, user_id)
        if not user:
            return None
        data: Dict[str, Any] = dict(fields)
        if "email" in data:
            data["email"] = normalize_email(data["email"])
        if "role" in data:
            data["role"] = Role.parse(data["role"]).slug
            # a role change re-derives the flags unless new ones come with it
            if data["role"] != user.role and "permissions" not in data:
                data["permissions"] = None
        if "permissions" in data:
            role = Role.parse(data.get("role", user.role))
            data["permissions"] = Permissions.normalize(data["permissions"], role).to_dict()
        for f, v in data.items():
            setattr(user, f, v)
        db.add(user); db.commit(); db.refresh(user)
        return user

    def permissions_of(self, user: User) -> Permissions:
        return Permissions.normalize(user.permissions, Role.parse(user.role))

    def delete(self, db: Session, user_id: int) -> bool:
        """Hard delete. Dependent auth rows go with it; audit rows keep a null user."""
        user = db.get(User, user_id)
        if not user:
            return False
        if is_reserved_super_admin(user.email):
            raise PolicyViolation("The reserved super-admin account cannot be deleted")
        try:
            for model in (OneTimeCode, OtpAttempt, RefreshToken):
                db.execute(delete(model).where(model.user_id == user_id))
            db.execute(update(SecurityEvent).where(SecurityEvent.user_id == user_id).values(user_id=None))
            db.execute(update(User).where(User.created_by == user_id).values(created_by=None))
            db.delete(user)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return True


user_crud = CRUDUser(User)
