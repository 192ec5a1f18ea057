# app/schemas/user.py
from __future__ import annotations
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, EmailStr, Field

from app.core.security_password import MAX_PASSWORD_LENGTH, MIN_PASSWORD_LENGTH

RoleName = Literal["super_admin", "admin", "user"]


class PermissionsIn(BaseModel):
    read: Optional[bool] = None
    write: Optional[bool] = None
    modify: Optional[bool] = None
    delete: Optional[bool] = None

    def present(self) -> dict:
        return self.model_dump(exclude_none=True)


class PermissionsOut(BaseModel):
    read: bool
    write: bool
    modify: bool
    delete: bool


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)
    role: RoleName = "user"
    permissions: Optional[PermissionsIn] = None


class UserUpdate(BaseModel):
    model_config = {"extra": "forbid"}

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    role: Optional[RoleName] = None
    permissions: Optional[PermissionsIn] = None
    is_active: Optional[bool] = None


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    permissions: PermissionsOut
    is_active: bool
    created_at: Optional[datetime] = None


class SecurityEventOut(BaseModel):
    id: int
    event_type: str
    ip_address: str
    user_agent: Optional[str] = None
    user_id: Optional[int] = None
    email: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime

    model_config = {"from_attributes": True}


def to_user_out(user) -> UserOut:
    from app.core.rbac import effective_permissions, effective_role

    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        role=effective_role(user).slug,
        permissions=PermissionsOut(**effective_permissions(user).to_dict()),
        is_active=bool(user.is_active),
        created_at=user.created_at,
    )
