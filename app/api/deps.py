from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AccountDisabled, TokenInvalid, TokenMissing
from app.core.revocation import RevokedTokenStore
from app.core.tokens import decode_access
from app.crud.security_event import RequestContext
from app.crud.user import user_crud
from app.db.session import get_db
from app.models.user import User
from app.services.session_issuer import SessionIssuer


@dataclass(frozen=True)
class Identity:
    """Verified access token. ``role`` is informational, never used for permission decisions."""
    user_id: int
    email: str
    role: str
    name: str
    exp: int
    token: str
    claims: Dict[str, Any]


# ----------------------------------------------------------------------
# Components built at startup and kept on app.state
# ----------------------------------------------------------------------
def get_revoked_store(request: Request) -> RevokedTokenStore:
    return request.app.state.revoked_tokens


def get_session_issuer(request: Request) -> SessionIssuer:
    return request.app.state.session_issuer


# ----------------------------------------------------------------------
# Request metadata
# ----------------------------------------------------------------------
def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(ip_address=client_ip(request), user_agent=request.headers.get("user-agent"))


# ----------------------------------------------------------------------
# Access token: cookie first, then Authorization: Bearer
# ----------------------------------------------------------------------
def read_access_token(request: Request) -> Optional[str]:
    cookie = request.cookies.get(settings.ACCESS_COOKIE_NAME)
    if cookie:
        return cookie
    authorization = request.headers.get("authorization") or ""
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def get_current_identity(
    request: Request,
    revoked: RevokedTokenStore = Depends(get_revoked_store),
) -> Identity:
    token = read_access_token(request)
    if not token:
        raise TokenMissing()
    payload = decode_access(token)
    if revoked.is_revoked(token):
        raise TokenInvalid("Token has been revoked")
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise TokenInvalid() from None
    return Identity(
        user_id=user_id,
        email=payload.get("email") or "",
        role=payload.get("role") or "",
        name=payload.get("name") or "",
        exp=int(payload["exp"]),
        token=token,
        claims=payload,
    )


def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    """Fresh user row for the verified identity."""
    user = user_crud.find_by_id(db, identity.user_id)
    if user is None:
        raise TokenInvalid("Account not found")
    if not user.is_active:
        raise AccountDisabled()
    return user
