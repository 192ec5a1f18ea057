# app/api/v1/users.py
from __future__ import annotations
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Path, Query, Response
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_request_context, get_session_issuer
from app.api.permissions import require_permission, require_role_at_least
from app.core.errors import Conflict, InvalidCredentials, NotFound, PolicyViolation
from app.core.rbac import Role, effective_role, ensure_can_manage, is_reserved_super_admin
from app.core.security_password import hash_password, verify_and_maybe_upgrade
from app.crud.security_event import RequestContext, list_events, record_event
from app.crud.user import normalize_email, user_crud
from app.db.session import get_db
from app.models.security_event import SecurityEventType
from app.models.user import User
from app.schemas.auth import StatusOut
from app.schemas.user import PasswordChange, SecurityEventOut, UserCreate, UserOut, UserUpdate, to_user_out
from app.services.session_issuer import SessionIssuer

router = APIRouter()


def _load(db: Session, user_id: int) -> User:
    u = user_crud.find_by_id(db, user_id)
    if not u:
        raise NotFound("User not found")
    return u


def _ensure_unique_email(db: Session, email: str, exclude_user_id: int | None = None) -> None:
    u = user_crud.find_by_email(db, email)
    if u and (exclude_user_id is None or u.id != exclude_user_id):
        raise Conflict("Email already in use")


# --------------------------------------------------------------------------- #
# Endpoints
# --------------------------------------------------------------------------- #
@router.get("", response_model=List[UserOut])
def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _: User = Depends(require_role_at_least(Role.ADMIN)),
):
    return [to_user_out(u) for u in user_crud.get_multi(db, skip=skip, limit=limit)]


@router.post("", response_model=UserOut, status_code=201)
def create_user(
    body: UserCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_role_at_least(Role.ADMIN)),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    role = Role.parse(body.role)
    if role > effective_role(actor):
        raise PolicyViolation("You cannot grant a role higher than your own")
    if is_reserved_super_admin(body.email):
        raise PolicyViolation("The reserved super-admin account cannot be created here")
    _ensure_unique_email(db, body.email)
    u = user_crud.create(
        db,
        name=body.name,
        email=body.email,
        password=body.password,
        role=role,
        permissions=body.permissions.present() if body.permissions else None,
        created_by=actor.id,
    )
    issuer.send_welcome(u)
    return to_user_out(u)


@router.put("/me/password", response_model=StatusOut)
def change_own_password(
    body: PasswordChange,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    issuer: SessionIssuer = Depends(get_session_issuer),
    ctx: RequestContext = Depends(get_request_context),
):
    ok, _ = verify_and_maybe_upgrade(body.current_password, user.password_hash)
    if not ok:
        raise InvalidCredentials("Current password is incorrect")
    user_crud.update(db, user.id, {"password_hash": hash_password(body.new_password)})
    issuer.ledger.revoke_all_for_user(db, user.id)
    record_event(db, SecurityEventType.password_changed, ctx, user_id=user.id, email=user.email)
    return StatusOut(message="Password updated, please sign in again on other devices")


@router.get("/me/security-events", response_model=List[SecurityEventOut])
def my_security_events(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return list_events(db, user_id=user.id, limit=limit)


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("read")),
):
    return to_user_out(_load(db, user_id))


@router.patch("/{user_id}", response_model=UserOut)
def update_user(
    body: UserUpdate,
    user_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    actor: User = Depends(require_role_at_least(Role.ADMIN)),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    target = _load(db, user_id)
    new_role = Role.parse(body.role) if body.role is not None else None
    deactivate = body.is_active is False
    ensure_can_manage(actor, target, new_role=new_role, deactivate=deactivate)

    fields: Dict[str, Any] = {}
    if body.name is not None:
        fields["name"] = body.name.strip()
    if body.email is not None and normalize_email(body.email) != target.email:
        if is_reserved_super_admin(target.email) or is_reserved_super_admin(body.email):
            raise PolicyViolation("The reserved super-admin email cannot be reassigned")
        _ensure_unique_email(db, body.email, exclude_user_id=target.id)
        fields["email"] = body.email
    if new_role is not None:
        fields["role"] = new_role
    if body.permissions is not None:
        current = user_crud.permissions_of(target).to_dict()
        current.update(body.permissions.present())
        fields["permissions"] = current
    if body.is_active is not None:
        fields["is_active"] = body.is_active

    updated = user_crud.update(db, target.id, fields) if fields else target
    if deactivate:
        issuer.ledger.revoke_all_for_user(db, target.id)
    return to_user_out(updated)


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    actor: User = Depends(require_role_at_least(Role.ADMIN)),
):
    target = _load(db, user_id)
    ensure_can_manage(actor, target, delete=True)
    user_crud.delete(db, target.id)
    return Response(status_code=204)


@router.post("/{user_id}/revoke-sessions", response_model=StatusOut)
def revoke_sessions(
    user_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    actor: User = Depends(require_role_at_least(Role.ADMIN)),
    issuer: SessionIssuer = Depends(get_session_issuer),
    ctx: RequestContext = Depends(get_request_context),
):
    target = _load(db, user_id)
    ensure_can_manage(actor, target)
    count = issuer.revoke_sessions(db, target.id, ctx, actor_id=actor.id)
    return StatusOut(message=f"{count} refresh tokens revoked")
